"""
Módulo de Clientes

Fuente de los datos del cliente (nombre, RNC, dirección) que se copian en
las facturas al momento de emitirlas.
"""
