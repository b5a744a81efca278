"""
Site importer Django application.

Crawls live websites, groups pages by structural layout, infers content
regions per layout and migrates the staged content into the CMS.
"""
