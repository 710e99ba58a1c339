import logging
import math
from numbers import Number

from bs4 import BeautifulSoup
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from shop_backend.auth import firebase_auth_required
from shop_backend.exceptions import ServiceError, error_response, parse_json_body
from shop_backend.firebase_config import get_db
from shop_backend.utils import now_iso

logger = logging.getLogger(__name__)

PRODUCTS_COLLECTION = 'products'


def clean_html_text(html_content):
    """Convert HTML to plain text, removing tags and cleaning up spacing."""
    if not html_content:
        return ""

    soup = BeautifulSoup(html_content, 'html.parser')
    for script in soup(["script", "style"]):
        script.decompose()

    text = soup.get_text(separator=' ')
    return ' '.join(text.split())


def _products(db=None):
    return (db or get_db()).collection(PRODUCTS_COLLECTION)


def _is_number(value):
    return isinstance(value, Number) and not isinstance(value, bool) and math.isfinite(value)


@csrf_exempt
@require_http_methods(['GET', 'POST'])
def products(request):
    if request.method == 'POST':
        return create_product(request)
    return list_products(request)


def list_products(request):
    try:
        docs = list(_products().stream())
        data = [{**doc.to_dict(), 'id': doc.id} for doc in docs]
        return JsonResponse({'success': True, 'count': len(data), 'data': data})
    except Exception as e:
        logger.error(f"Firestore error listing products: {e}")
        return JsonResponse({'success': False, 'error': {'message': 'Failed to fetch products'}}, status=500)


@require_http_methods(['GET'])
def get_product(request, product_id):
    try:
        doc = _products().document(product_id).get()
        if not doc.exists:
            return JsonResponse({'success': False, 'error': {'message': 'Product not found'}}, status=404)
        return JsonResponse({'success': True, 'data': {**doc.to_dict(), 'id': doc.id}})
    except Exception as e:
        logger.error(f"Error fetching product {product_id}: {e}")
        return JsonResponse({'success': False, 'error': {'message': 'Server error'}}, status=500)


@firebase_auth_required
def create_product(request):
    try:
        body = parse_json_body(request)
    except ServiceError as e:
        return error_response(e)

    name = body.get('name')
    price = body.get('price')
    stock = body.get('stock')
    if (not isinstance(name, str) or not name.strip()
            or not _is_number(price) or price <= 0
            or not _is_number(stock) or stock < 0):
        return JsonResponse({'success': False, 'error': {'message': 'Missing or invalid required fields'}}, status=400)

    try:
        timestamp = now_iso()
        product_data = {
            'name': name.strip(),
            'description': clean_html_text(body.get('description')),
            'price': price,
            'stock': stock,
            'images': body.get('images') or [],
            'currency': body.get('currency') or 'KES',
            'seller_id': request.firebase_user.uid,
            'is_active': True,
            'created_at': timestamp,
            'updated_at': timestamp,
        }

        doc_ref = _products().document()
        doc_ref.set(product_data)
        logger.info(f"Product {doc_ref.id} created by seller {request.firebase_user.uid}.")

        return JsonResponse({
            'success': True,
            'data': {**product_data, 'id': doc_ref.id},
            'message': 'Product created successfully',
        }, status=201)
    except Exception as e:
        logger.error(f"Create product error: {e}")
        return JsonResponse({'success': False, 'error': {'message': 'Failed to create product'}}, status=500)
