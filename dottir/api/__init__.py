"""
Couche HTTP de Dottir
"""
