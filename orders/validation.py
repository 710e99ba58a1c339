"""
Request body validation for the order endpoints.

Each validator returns a normalized copy of the payload or raises
ValidationError with a list of field errors in `details`.
"""
import math
from numbers import Number

from shop_backend.exceptions import ValidationError

from .models import ADMIN_SETTABLE_STATUSES, DEFAULT_CURRENCY, PaymentMethod, ShippingStatus

ADDRESS_FIELDS = {
    'street': 200,
    'city': 100,
    'state': 100,
    'country': 100,
    'postal_code': 20,
}


def _is_number(value):
    return isinstance(value, Number) and not isinstance(value, bool) and math.isfinite(value)


def _string(errors, data, field, path, max_length=None, min_length=1, required=True):
    value = data.get(field)
    if value is None:
        if required:
            errors.append({'field': f"{path}{field}", 'error': 'This field is required.'})
        return None
    if not isinstance(value, str) or len(value.strip()) < min_length:
        errors.append({'field': f"{path}{field}", 'error': f"Must be a string of at least {min_length} characters."})
        return None
    if max_length and len(value) > max_length:
        errors.append({'field': f"{path}{field}", 'error': f"Must be at most {max_length} characters."})
        return None
    return value.strip()


def _number(errors, data, field, path, minimum=0, exclusive=False, default=None, integer=False):
    value = data.get(field, default)
    if value is None:
        errors.append({'field': f"{path}{field}", 'error': 'This field is required.'})
        return None
    if not _is_number(value) or (integer and int(value) != value):
        kind = 'an integer' if integer else 'a number'
        errors.append({'field': f"{path}{field}", 'error': f"Must be {kind}."})
        return None
    if value < minimum or (exclusive and value == minimum):
        comparison = 'greater than' if exclusive else 'at least'
        errors.append({'field': f"{path}{field}", 'error': f"Must be {comparison} {minimum}."})
        return None
    return int(value) if integer else value


def _address(errors, data, field):
    address = data.get(field)
    if not isinstance(address, dict):
        errors.append({'field': field, 'error': 'Must be an address object.'})
        return None
    path = f"{field}."
    cleaned = {name: _string(errors, address, name, path, max_length) for name, max_length in ADDRESS_FIELDS.items()}
    cleaned['phone'] = _string(errors, address, 'phone', path, max_length=20, min_length=10)
    for optional, max_length in (('email', 254), ('notes', 500)):
        value = _string(errors, address, optional, path, max_length, required=False)
        if value is not None:
            cleaned[optional] = value
    if 'email' in cleaned and '@' not in cleaned['email']:
        errors.append({'field': f"{path}email", 'error': 'Enter a valid email address.'})
    return cleaned


def _item(errors, item, index):
    path = f"items[{index}]."
    if not isinstance(item, dict):
        errors.append({'field': f"items[{index}]", 'error': 'Must be an item object.'})
        return None
    cleaned = {
        'product_id': _string(errors, item, 'product_id', path),
        'sku': _string(errors, item, 'sku', path),
        'name': _string(errors, item, 'name', path),
        'quantity': _number(errors, item, 'quantity', path, minimum=0, exclusive=True, integer=True),
        'price': _number(errors, item, 'price', path, minimum=0, exclusive=True),
        'discount': _number(errors, item, 'discount', path, default=0),
        'tax': _number(errors, item, 'tax', path, default=0),
    }
    for optional in ('variant_id', 'image'):
        value = _string(errors, item, optional, path, required=False)
        if value is not None:
            cleaned[optional] = value
    if isinstance(item.get('attributes'), dict):
        cleaned['attributes'] = {str(k): str(v) for k, v in item['attributes'].items()}
    return cleaned


def validate_create_order(data: dict) -> dict:
    errors = []

    items = data.get('items')
    if not isinstance(items, list) or not items:
        errors.append({'field': 'items', 'error': 'Cannot process an empty order.'})
        items = []

    payment_method = data.get('payment_method')
    if payment_method not in PaymentMethod.values:
        errors.append({'field': 'payment_method', 'error': f"Must be one of {PaymentMethod.values}."})

    cleaned = {
        'user_id': _string(errors, data, 'user_id', ''),
        'items': [_item(errors, item, index) for index, item in enumerate(items)],
        'shipping_address': _address(errors, data, 'shipping_address'),
        'payment_method': payment_method,
        'shipping_method': _string(errors, data, 'shipping_method', ''),
        'shipping_cost': _number(errors, data, 'shipping_cost', '', default=0),
        'discount': _number(errors, data, 'discount', '', default=0),
        'tax': _number(errors, data, 'tax', '', default=0),
        'currency': _string(errors, data, 'currency', '', max_length=3, required=False) or DEFAULT_CURRENCY,
    }

    if data.get('billing_address') is not None:
        cleaned['billing_address'] = _address(errors, data, 'billing_address')

    # Client totals are kept for audit only; the service recomputes them.
    for field in ('subtotal', 'total'):
        if data.get(field) is not None:
            cleaned[field] = _number(errors, data, field, '', minimum=0, exclusive=True)

    notes = _string(errors, data, 'notes', '', max_length=1000, required=False)
    if notes is not None:
        cleaned['notes'] = notes
    coupon_code = _string(errors, data, 'coupon_code', '', required=False)
    if coupon_code is not None:
        cleaned['coupon_code'] = coupon_code
    if isinstance(data.get('metadata'), dict):
        cleaned['metadata'] = data['metadata']

    if errors:
        raise ValidationError('Validation failed', details=errors)
    return cleaned


def validate_status_update(data: dict) -> dict:
    status = data.get('status')
    if status not in ADMIN_SETTABLE_STATUSES:
        raise ValidationError('Validation failed', details=[
            {'field': 'status', 'error': f"Must be one of {[s.value for s in ADMIN_SETTABLE_STATUSES]}."}
        ])
    reason = data.get('reason')
    if reason is not None and not isinstance(reason, str):
        raise ValidationError('Validation failed', details=[{'field': 'reason', 'error': 'Must be a string.'}])
    return {'status': status, 'reason': reason}


def validate_shipping_update(data: dict) -> dict:
    shipping_status = data.get('shipping_status')
    if shipping_status not in ShippingStatus.values:
        raise ValidationError('Validation failed', details=[
            {'field': 'shipping_status', 'error': f"Must be one of {ShippingStatus.values}."}
        ])
    return {
        'shipping_status': shipping_status,
        'tracking_number': data.get('tracking_number'),
        'carrier': data.get('carrier'),
    }
