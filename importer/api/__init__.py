"""
Importer REST API.
"""
