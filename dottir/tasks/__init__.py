"""
Taches de maintenance Dottir
"""
