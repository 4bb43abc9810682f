#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Request body validation for the NDVI and DEM endpoints.

Validators collect every problem they find and raise a single
ValidationError whose `details` list holds one message per field.
"""

import math
from typing import Any, Dict, List

from api_errors import InvalidDateRange, ValidationError
from openeo_backend import DEFAULT_DEM_PRODUCT, DEM_PRODUCTS
from process_graphs import BINARY_FORMATS, JSON_FORMAT, normalize_date

DEM_FORMATS = (JSON_FORMAT,) + BINARY_FORMATS


def _is_number(v: Any) -> bool:
    if not isinstance(v, (int, float)) or isinstance(v, bool):
        return False
    try:
        return math.isfinite(v)
    except OverflowError:
        return False


def _check_coordinates(value: Any, errors: List[str]) -> None:
    if value is None:
        errors.append('"coordinates" is required')
        return
    if not isinstance(value, list):
        errors.append('"coordinates" must be an array')
        return
    if not value:
        errors.append('"coordinates" must contain at least 1 items')
        return
    for r, ring in enumerate(value):
        label = f'"coordinates[{r}]"'
        if not isinstance(ring, list):
            errors.append(f"{label} must be an array")
            continue
        if len(ring) < 3:
            errors.append(f"{label} must contain at least 3 items")
        distinct = set()
        numeric = True
        for p, pt in enumerate(ring):
            plabel = f'"coordinates[{r}][{p}]"'
            if not isinstance(pt, list):
                errors.append(f"{plabel} must be an array")
            elif len(pt) != 2:
                errors.append(f"{plabel} must contain 2 items")
            elif not all(_is_number(v) for v in pt):
                errors.append(f"{plabel} must contain numbers only")
            else:
                distinct.add((float(pt[0]), float(pt[1])))
                continue
            numeric = False
        if numeric and len(ring) >= 3 and len(distinct) < 3:
            errors.append(f"{label} must contain at least 3 distinct points")


def _check_date(body: Dict[str, Any], key: str, errors: List[str]):
    if body.get(key) in (None, ""):
        errors.append(f'"{key}" is required')
        return None
    try:
        return normalize_date(body[key])
    except InvalidDateRange:
        errors.append(f'"{key}" must be a valid date')
        return None


def _require_object(body: Any) -> Dict[str, Any]:
    if not isinstance(body, dict):
        raise ValidationError("Validation error", details=['"value" must be of type object'])
    return body


def validate_ndvi_request(body: Any) -> Dict[str, Any]:
    body = _require_object(body)
    errors: List[str] = []
    start = _check_date(body, "start_date", errors)
    end = _check_date(body, "end_date", errors)
    _check_coordinates(body.get("coordinates"), errors)
    if errors:
        raise ValidationError("Validation error", details=errors)

    if start > end:
        raise InvalidDateRange(
            "Validation error",
            details=["start_date must be earlier than or equal to end_date"],
        )
    return {"start_date": start, "end_date": end, "coordinates": body["coordinates"]}


def validate_dem_request(body: Any) -> Dict[str, Any]:
    body = _require_object(body)
    errors: List[str] = []
    _check_coordinates(body.get("coordinates"), errors)

    product = body.get("product", DEFAULT_DEM_PRODUCT)
    if product not in DEM_PRODUCTS:
        errors.append(f'"product" must be one of [{", ".join(DEM_PRODUCTS)}]')

    fmt = body.get("format", JSON_FORMAT)
    if fmt not in DEM_FORMATS:
        errors.append(f'"format" must be one of [{", ".join(DEM_FORMATS)}]')

    save_locally = body.get("save_locally", True)
    if not isinstance(save_locally, bool):
        errors.append('"save_locally" must be a boolean')

    if errors:
        raise ValidationError("Validation error", details=errors)
    return {
        "coordinates": body["coordinates"],
        "product": product,
        "format": fmt,
        "save_locally": save_locally,
    }
