"""
Módulo de Inventario: existencias y movimientos
"""
