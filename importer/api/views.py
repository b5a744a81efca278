"""
Importer API Views

REST API endpoints for site import and template inference.

This module provides endpoints for:
- Crawl presets and starting, polling, stopping, restarting and deleting imports
- Staged items and structural groups of a site
- Rule generation, rule set review and selector overrides
- Named migration rules
- Page and product migration

All endpoints require authentication; triggers are rate limited.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, OpenApiParameter
from drf_spectacular.types import OpenApiTypes

from importer.api.throttling import CrawlTriggerThrottle, InferenceThrottle, MigrationThrottle
from importer.models import ImportedSite, StagedItem
from importer.presets import UnknownPresetError, list_presets
from importer.services import site_service
from importer.services.grouper import group_site
from importer.services.migration import MigrationError
from importer.services.rule_store import (
    RuleNotFound,
    RuleStoreError,
    delete_migration_rule,
    override_region_selector,
    upsert_migration_rule,
)
from importer.services.site_service import SiteNotFound, SiteStateError

logger = logging.getLogger(__name__)


def _site_dict(site: ImportedSite) -> Dict[str, Any]:
    return {
        "id": str(site.id),
        "root_url": site.root_url,
        "status": site.status,
        "status_message": site.status_message,
        "page_count": site.page_count,
        "config": site.config,
        "rule_groups": len(site.ruleset or {}),
        "created_at": site.created_at.isoformat(),
        "updated_at": site.updated_at.isoformat(),
    }


def _item_dict(item: StagedItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "url": item.url,
        "title": item.title,
        "structural_hash": item.structural_hash,
        "item_type": item.item_type,
        "status": item.status,
        "content_id": item.content_id,
        "metadata": item.metadata,
        "created_at": item.created_at.isoformat(),
    }


def _load_site(site_id) -> Tuple[Optional[ImportedSite], Optional[Response]]:
    try:
        return site_service.get_site(site_id), None
    except SiteNotFound as e:
        return None, Response({"error": str(e)}, status=status.HTTP_404_NOT_FOUND)


def _bad_request(message: str) -> Response:
    return Response({"error": message}, status=status.HTTP_400_BAD_REQUEST)


def _item_ids(data) -> Tuple[Optional[list], Optional[str]]:
    item_ids = data.get("item_ids")
    if item_ids is None:
        return None, None
    if not isinstance(item_ids, list) or not all(
        isinstance(i, int) and not isinstance(i, bool) for i in item_ids
    ):
        return None, "item_ids must be a list of integers"
    return item_ids, None


# ============================================================
# Sites
# ============================================================

@extend_schema(
    tags=['Import'],
    summary='List crawl presets',
    responses={200: OpenApiTypes.OBJECT},
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def presets(request):
    return Response({'presets': list_presets()})


@extend_schema(
    tags=['Import'],
    summary='List imports or start a new crawl',
    description='''
    GET lists import jobs, newest first.

    POST creates an import job for `root_url` and queues its crawl.
    `preset` selects platform defaults; `config` keys (maxPages,
    priorityPatterns, excludePatterns, rules, feedUrl) override the preset.
    ''',
    request={
        'application/json': {
            'type': 'object',
            'properties': {
                'root_url': {'type': 'string', 'format': 'uri'},
                'preset': {'type': 'string'},
                'config': {'type': 'object'},
            },
            'required': ['root_url'],
        }
    },
    responses={200: OpenApiTypes.OBJECT, 202: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT},
)
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([CrawlTriggerThrottle])
def sites(request):
    if request.method == 'GET':
        queryset = ImportedSite.objects.order_by('-created_at')
        status_filter = request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        paginator = PageNumberPagination()
        page = paginator.paginate_queryset(queryset, request)
        return paginator.get_paginated_response([_site_dict(s) for s in page])

    root_url = request.data.get('root_url')
    if not root_url:
        return _bad_request('root_url is required')
    config = request.data.get('config') or {}
    if not isinstance(config, dict):
        return _bad_request('config must be an object')

    try:
        site = site_service.create_site(root_url, request.data.get('preset'), config)
    except (site_service.InvalidSiteURL, UnknownPresetError) as e:
        return _bad_request(str(e))

    task_id = site_service.start_crawl(site)
    site.refresh_from_db()
    return Response({'site': _site_dict(site), 'task_id': task_id}, status=status.HTTP_202_ACCEPTED)


@extend_schema(
    tags=['Import'],
    summary='Get or delete an import',
    responses={200: OpenApiTypes.OBJECT, 204: None, 404: OpenApiTypes.OBJECT},
)
@api_view(['GET', 'DELETE'])
@permission_classes([IsAuthenticated])
def site_detail(request, site_id):
    site, error = _load_site(site_id)
    if error:
        return error

    if request.method == 'DELETE':
        site_service.delete_site(site)
        return Response(status=status.HTTP_204_NO_CONTENT)
    return Response(_site_dict(site))


@extend_schema(
    tags=['Import'],
    summary='Stop a running crawl or rule generation',
    responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def stop_site(request, site_id):
    site, error = _load_site(site_id)
    if error:
        return error
    try:
        site_service.stop_site(site)
    except SiteStateError as e:
        return _bad_request(str(e))
    return Response(_site_dict(site))


@extend_schema(
    tags=['Import'],
    summary='Clear staged items and crawl again',
    responses={202: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([CrawlTriggerThrottle])
def restart_site(request, site_id):
    site, error = _load_site(site_id)
    if error:
        return error
    task_id = site_service.restart_site(site)
    site.refresh_from_db()
    return Response({'site': _site_dict(site), 'task_id': task_id}, status=status.HTTP_202_ACCEPTED)


@extend_schema(
    tags=['Import'],
    summary='List staged items',
    parameters=[
        OpenApiParameter('status', OpenApiTypes.STR, description='Filter by item status'),
        OpenApiParameter('structural_hash', OpenApiTypes.STR, description='Filter by structural group'),
        OpenApiParameter('item_type', OpenApiTypes.STR, description='Filter by inferred item type'),
    ],
    responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def site_items(request, site_id):
    site, error = _load_site(site_id)
    if error:
        return error

    queryset = site.items.order_by('id')
    for field in ('status', 'structural_hash', 'item_type'):
        value = request.query_params.get(field)
        if value:
            queryset = queryset.filter(**{field: value})

    paginator = PageNumberPagination()
    page = paginator.paginate_queryset(queryset, request)
    return paginator.get_paginated_response([_item_dict(i) for i in page])


@extend_schema(
    tags=['Import'],
    summary='List structural groups',
    responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def site_groups(request, site_id):
    site, error = _load_site(site_id)
    if error:
        return error
    ruleset = site.ruleset or {}
    groups = []
    for group in group_site(site):
        entry = ruleset.get(group.structural_hash) or {}
        groups.append({**group.to_dict(), 'rule_status': entry.get('status')})
    return Response({'groups': groups})


# ============================================================
# Rules
# ============================================================

@extend_schema(
    tags=['Rules'],
    summary='Generate rules for every structural group',
    description='''
    Queues template inference. Each group is proposed by the layout model,
    validated against other pages of the group and retried with feedback
    up to the configured number of attempts.
    ''',
    responses={202: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([InferenceThrottle])
def generate_rules(request, site_id):
    site, error = _load_site(site_id)
    if error:
        return error
    try:
        task_id = site_service.start_rule_generation(site)
    except SiteStateError as e:
        return _bad_request(str(e))
    return Response({'site_id': str(site.id), 'task_id': task_id}, status=status.HTTP_202_ACCEPTED)


@extend_schema(
    tags=['Rules'],
    summary='Get the rule set',
    responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ruleset(request, site_id):
    site, error = _load_site(site_id)
    if error:
        return error
    return Response({'site_id': str(site.id), 'status': site.status, 'ruleset': site.ruleset or {}})


@extend_schema(
    tags=['Rules'],
    summary='Override a region selector',
    description='Replaces the selector of one region and re-validates it against the group.',
    request={
        'application/json': {
            'type': 'object',
            'properties': {'selector': {'type': 'string'}},
            'required': ['selector'],
        }
    },
    responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
)
@api_view(['PATCH'])
@permission_classes([IsAuthenticated])
def override_region(request, site_id, structural_hash, key):
    site, error = _load_site(site_id)
    if error:
        return error
    try:
        entry = override_region_selector(site, structural_hash, key, request.data.get('selector'))
    except RuleNotFound as e:
        return Response({'error': str(e)}, status=status.HTTP_404_NOT_FOUND)
    except RuleStoreError as e:
        return _bad_request(str(e))
    return Response(entry)


@extend_schema(
    tags=['Rules'],
    summary='List or save migration rules',
    description='POST upserts a rule by id; a new id is generated when absent.',
    request={
        'application/json': {
            'type': 'object',
            'properties': {
                'id': {'type': 'string'},
                'name': {'type': 'string'},
                'structural_hash': {'type': 'string'},
                'template_id': {'type': 'string'},
                'selector_map': {'type': 'object'},
            },
        }
    },
    responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
)
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def migration_rules(request, site_id):
    site, error = _load_site(site_id)
    if error:
        return error
    if request.method == 'GET':
        return Response({'migration_rules': site.migration_rules})

    selector_map = request.data.get('selector_map')
    if selector_map is not None and not isinstance(selector_map, dict):
        return _bad_request('selector_map must be an object')
    rule = upsert_migration_rule(site, dict(request.data))
    return Response(rule)


@extend_schema(
    tags=['Rules'],
    summary='Delete a migration rule',
    responses={204: None, 404: OpenApiTypes.OBJECT},
)
@api_view(['DELETE'])
@permission_classes([IsAuthenticated])
def migration_rule_detail(request, site_id, rule_id):
    site, error = _load_site(site_id)
    if error:
        return error
    try:
        delete_migration_rule(site, rule_id)
    except RuleNotFound as e:
        return Response({'error': str(e)}, status=status.HTTP_404_NOT_FOUND)
    return Response(status=status.HTTP_204_NO_CONTENT)


# ============================================================
# Migration
# ============================================================

MIGRATE_REQUEST = {
    'application/json': {
        'type': 'object',
        'properties': {
            'structural_hash': {'type': 'string'},
            'item_ids': {'type': 'array', 'items': {'type': 'integer'}},
            'all': {'type': 'boolean'},
            'template_id': {'type': 'string'},
            'selector_map': {'type': 'object'},
            'background': {'type': 'boolean', 'default': False},
        },
    }
}


@extend_schema(
    tags=['Migration'],
    summary='Migrate staged pages',
    description='''
    Migrates one structural group (`structural_hash`), explicit `item_ids`,
    or every completed item (`all: true`). Returns one result per item.
    With `background: true` the migration is queued instead.
    ''',
    request=MIGRATE_REQUEST,
    responses={200: OpenApiTypes.OBJECT, 202: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT},
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([MigrationThrottle])
def migrate(request, site_id):
    from importer import tasks
    from importer.services import migration

    site, error = _load_site(site_id)
    if error:
        return error

    item_ids, id_error = _item_ids(request.data)
    if id_error:
        return _bad_request(id_error)
    structural_hash = request.data.get('structural_hash')
    template_id = request.data.get('template_id')
    selector_map = request.data.get('selector_map')
    if selector_map is not None and not isinstance(selector_map, dict):
        return _bad_request('selector_map must be an object')
    background = bool(request.data.get('background'))

    if structural_hash:
        if background:
            task = tasks.migrate_group.delay(str(site.id), structural_hash, template_id, selector_map)
            return Response({'task_id': task.id}, status=status.HTTP_202_ACCEPTED)
        report = migration.migrate_group(site, structural_hash, template_id, selector_map)
    elif item_ids is not None:
        if background:
            task = tasks.migrate_items.delay(str(site.id), item_ids, template_id, selector_map)
            return Response({'task_id': task.id}, status=status.HTTP_202_ACCEPTED)
        report = migration.migrate_items(site, item_ids, template_id, selector_map)
    elif request.data.get('all'):
        if background:
            task = tasks.migrate_all.delay(str(site.id), template_id, selector_map)
            return Response({'task_id': task.id}, status=status.HTTP_202_ACCEPTED)
        report = migration.migrate_all(site, template_id, selector_map)
    else:
        return _bad_request('Provide structural_hash, item_ids or all')

    return Response(report.to_dict())


@extend_schema(
    tags=['Migration'],
    summary='Migrate staged products',
    description='Migrates explicit `item_ids` (every id reported) or all product items.',
    request=MIGRATE_REQUEST,
    responses={200: OpenApiTypes.OBJECT, 202: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT},
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([MigrationThrottle])
def migrate_products(request, site_id):
    from importer import tasks
    from importer.services.product_migration import migrate_products as run_product_migration

    site, error = _load_site(site_id)
    if error:
        return error

    item_ids, id_error = _item_ids(request.data)
    if id_error:
        return _bad_request(id_error)
    template_id = request.data.get('template_id')

    if request.data.get('background'):
        task = tasks.migrate_products.delay(str(site.id), template_id, item_ids)
        return Response({'task_id': task.id}, status=status.HTTP_202_ACCEPTED)
    return Response(run_product_migration(site, template_id, item_ids).to_dict())


@extend_schema(
    tags=['Migration'],
    summary='Migrate with a stored migration rule',
    request=MIGRATE_REQUEST,
    responses={200: OpenApiTypes.OBJECT, 202: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([MigrationThrottle])
def migrate_with_rule(request, site_id, rule_id):
    from importer import tasks
    from importer.services import migration

    site, error = _load_site(site_id)
    if error:
        return error

    item_ids, id_error = _item_ids(request.data)
    if id_error:
        return _bad_request(id_error)

    if request.data.get('background'):
        task = tasks.migrate_with_rule.delay(str(site.id), rule_id, item_ids)
        return Response({'task_id': task.id}, status=status.HTTP_202_ACCEPTED)

    try:
        report = migration.migrate_with_rule(site, rule_id, item_ids)
    except RuleNotFound as e:
        return Response({'error': str(e)}, status=status.HTTP_404_NOT_FOUND)
    except MigrationError as e:
        return _bad_request(str(e))
    return Response(report.to_dict())
