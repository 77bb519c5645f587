"""
Módulo de Productos
"""
