"""
Importer API URL Configuration

Endpoints (all under /api/v1/import/):
- GET        presets/                                         - Crawl presets
- GET/POST   sites/                                           - List imports / start crawl
- GET/DELETE sites/<id>/                                      - Poll / delete import
- POST       sites/<id>/stop/                                 - Stop crawl or inference
- POST       sites/<id>/restart/                              - Clear and recrawl
- GET        sites/<id>/items/                                - Staged items
- GET        sites/<id>/groups/                               - Structural groups
- POST       sites/<id>/rules/generate/                       - Generate rules
- GET        sites/<id>/rules/                                - Rule set
- PATCH      sites/<id>/rules/<hash>/regions/<key>/           - Override region selector
- GET/POST   sites/<id>/migration-rules/                      - List / upsert migration rules
- DELETE     sites/<id>/migration-rules/<rule_id>/            - Delete migration rule
- POST       sites/<id>/migrate/                              - Migrate pages
- POST       sites/<id>/migrate/products/                     - Migrate products
- POST       sites/<id>/migrate/rule/<rule_id>/               - Migrate with a migration rule
"""

from django.urls import path

from importer.api.views import (
    presets,
    sites,
    site_detail,
    stop_site,
    restart_site,
    site_items,
    site_groups,
    generate_rules,
    ruleset,
    override_region,
    migration_rules,
    migration_rule_detail,
    migrate,
    migrate_products,
    migrate_with_rule,
)

app_name = 'importer_api'

urlpatterns = [
    # Sites
    path('import/presets/', presets, name='presets'),
    path('import/sites/', sites, name='sites'),
    path('import/sites/<uuid:site_id>/', site_detail, name='site_detail'),
    path('import/sites/<uuid:site_id>/stop/', stop_site, name='stop_site'),
    path('import/sites/<uuid:site_id>/restart/', restart_site, name='restart_site'),
    path('import/sites/<uuid:site_id>/items/', site_items, name='site_items'),
    path('import/sites/<uuid:site_id>/groups/', site_groups, name='site_groups'),

    # Rules
    path('import/sites/<uuid:site_id>/rules/generate/', generate_rules, name='generate_rules'),
    path('import/sites/<uuid:site_id>/rules/', ruleset, name='ruleset'),
    path(
        'import/sites/<uuid:site_id>/rules/<str:structural_hash>/regions/<str:key>/',
        override_region,
        name='override_region',
    ),
    path('import/sites/<uuid:site_id>/migration-rules/', migration_rules, name='migration_rules'),
    path(
        'import/sites/<uuid:site_id>/migration-rules/<str:rule_id>/',
        migration_rule_detail,
        name='migration_rule_detail',
    ),

    # Migration
    path('import/sites/<uuid:site_id>/migrate/', migrate, name='migrate'),
    path('import/sites/<uuid:site_id>/migrate/products/', migrate_products, name='migrate_products'),
    path('import/sites/<uuid:site_id>/migrate/rule/<str:rule_id>/', migrate_with_rule, name='migrate_with_rule'),
]
