"""
Módulo de Facturación - ledger fiscal

- Facturas con NCF y numeración interna (FAC-<año>-<n>)
- Integración con inventario (descuento y reversión de stock con movimientos)
- Pagos parciales y conciliación de saldos
- Notas de crédito con impuesto proporcional
- Estado de la factura derivado de pagos y notas de crédito

Tablas principales:
- invoices / invoice_items: Facturas de venta y sus ítems
- payments: Pagos de facturas
- credit_notes / credit_note_items: Notas de crédito
"""
