"""
Schemas Pydantic de l'API Dottir
"""
