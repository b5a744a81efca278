"""
Importer services: crawling, fingerprinting, template inference and migration.
"""
