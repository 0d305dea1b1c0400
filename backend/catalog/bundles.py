"""
Bundle resolution for catalog products.

A bundle's stock and price are never stored; they are derived from its
components every time they are read:

    stock = min(component.stock // quantity)
    price = sum(component.price * quantity) * BUNDLE_PRICE_MULTIPLIER

Composition rules are enforced here as well, before any component row is
written.
"""
import logging
from collections import defaultdict, namedtuple
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.db import transaction

from backend.core.exceptions import InvalidBundleComposition, ProductNotFound
from .models import Product, BundleComponent

logger = logging.getLogger(__name__)

ResolvedBundle = namedtuple('ResolvedBundle', ['stock', 'price'])

TWO_PLACES = Decimal('0.01')


def get_price_multiplier():
    value = settings.INVENTORY_CONFIG.get('BUNDLE_PRICE_MULTIPLIER', '1.00')
    return Decimal(str(value))


def _get_product(product):
    if isinstance(product, Product):
        return product
    try:
        return Product.objects.prefetch_related('bundle_components__component').get(pk=product)
    except (Product.DoesNotExist, ValueError, TypeError):
        raise ProductNotFound(product)


def _component_lines(bundle):
    return [(line.component, line.quantity) for line in bundle.bundle_components.all()]


def resolve(product, lookup=None):
    """
    Resolve the effective stock and price of a product.

    Args:
        product: Product instance or primary key
        lookup: Optional {id: Product} map whose rows take precedence over the
            component rows loaded through the bundle (e.g. rows locked for update)

    Returns:
        ResolvedBundle(stock, price). Simple products resolve to their own
        fields; a bundle without components resolves to (0, 0.00).
    """
    product = _get_product(product)
    if not product.is_bundle:
        return ResolvedBundle(product.stock, product.price)

    lines = _component_lines(product)
    if not lines:
        return ResolvedBundle(0, Decimal('0.00'))

    stock = None
    total = Decimal('0')
    for component, quantity in lines:
        if lookup and component.pk in lookup:
            component = lookup[component.pk]
        available = component.stock // quantity
        stock = available if stock is None else min(stock, available)
        total += Decimal(component.price) * quantity

    price = (total * get_price_multiplier()).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    return ResolvedBundle(stock, price)


def effective_stock(product):
    return resolve(product).stock


def effective_price(product):
    return resolve(product).price


def _composition_graph(exclude_bundle_id=None):
    """Adjacency map bundle_id -> [component_id] over every stored component row"""
    graph = defaultdict(list)
    rows = BundleComponent.objects.values_list('bundle_id', 'component_id')
    for bundle_id, component_id in rows:
        if bundle_id == exclude_bundle_id:
            continue
        graph[bundle_id].append(component_id)
    return graph


def _reaches(graph, start_ids, target_id):
    stack = list(start_ids)
    visited = set()
    while stack:
        node = stack.pop()
        if node == target_id:
            return True
        if node in visited:
            continue
        visited.add(node)
        stack.extend(graph.get(node, ()))
    return False


def validate_composition(bundle_id, components):
    """
    Validate a proposed bundle composition.

    Args:
        bundle_id: Primary key of the bundle being written, or None for a new one
        components: List of (component_id, quantity) pairs

    Returns:
        {component_id: Product} for the referenced components

    Raises:
        InvalidBundleComposition: empty list, bad quantity, self-reference,
            duplicate entry, cycle, or a component that is itself a bundle
        ProductNotFound: a referenced component does not exist
    """
    if not components:
        raise InvalidBundleComposition('Bundle components must be a non-empty array.')

    seen = set()
    for component_id, quantity in components:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidBundleComposition(
                f'Invalid quantity for component {component_id}. Quantity must be a whole number of at least 1.'
            )
        if bundle_id is not None and component_id == bundle_id:
            raise InvalidBundleComposition('A bundle cannot contain itself as a component.')
        if component_id in seen:
            raise InvalidBundleComposition('Duplicate components found in the bundle.')
        seen.add(component_id)

    found = Product.objects.in_bulk(list(seen))
    for component_id, _ in components:
        if component_id not in found:
            raise ProductNotFound(component_id, message=f'Component product with ID {component_id} not found.')

    if bundle_id is not None:
        graph = _composition_graph(exclude_bundle_id=bundle_id)
        if _reaches(graph, seen, bundle_id):
            raise InvalidBundleComposition('Bundle composition would create a cycle.')

    for component_id, _ in components:
        component = found[component_id]
        if component.is_bundle:
            raise InvalidBundleComposition(
                f'Component "{component.name}" cannot be another bundle. Nested bundles are not supported.'
            )
    return found


def dependent_bundle_ids(product_id):
    """Ids of every bundle that contains the product, directly or transitively"""
    reverse = defaultdict(list)
    for bundle_id, component_id in BundleComponent.objects.values_list('bundle_id', 'component_id'):
        reverse[component_id].append(bundle_id)

    result = set()
    stack = list(reverse.get(product_id, ()))
    while stack:
        bundle_id = stack.pop()
        if bundle_id in result:
            continue
        result.add(bundle_id)
        stack.extend(reverse.get(bundle_id, ()))
    return sorted(result)


def expand(product, quantity):
    """
    Expand an ordered quantity into simple-product deductions.

    Returns:
        {product_id: units}
    """
    if not product.is_bundle:
        return {product.pk: quantity}

    lines = _component_lines(product)
    if not lines:
        raise InvalidBundleComposition(f'Bundle "{product.name}" has no components and cannot be ordered.')

    deductions = {}
    for component, per_bundle in lines:
        if component.is_bundle:
            raise InvalidBundleComposition(
                f'Component "{component.name}" cannot be another bundle. Nested bundles are not supported.'
            )
        deductions[component.pk] = deductions.get(component.pk, 0) + per_bundle * quantity
    return deductions


def set_components(bundle, components):
    """Validate and replace the component rows of a bundle"""
    found = validate_composition(bundle.pk, components)
    with transaction.atomic():
        BundleComponent.objects.filter(bundle=bundle).delete()
        BundleComponent.objects.bulk_create([
            BundleComponent(bundle=bundle, component=found[component_id], quantity=quantity, position=position)
            for position, (component_id, quantity) in enumerate(components)
        ])
    # Drop any stale prefetched rows so the next resolve sees the new composition
    if hasattr(bundle, '_prefetched_objects_cache'):
        bundle._prefetched_objects_cache.pop('bundle_components', None)
    logger.info("Bundle %s composition set: %s", bundle.pk, components)
