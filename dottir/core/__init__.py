"""
Noyau Dottir: configuration, logging, base de donnees, crypto
"""
