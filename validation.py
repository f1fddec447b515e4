from flask import request
from marshmallow import ValidationError as SchemaValidationError
from errors import ValidationError

# ============================================
# 統一的輸入驗證
# ============================================


def get_json_body(required=True):
    """取得 JSON body;沒有 body 時視需要丟出 ValidationError"""
    data = request.get_json(silent=True)

    if data is None:
        if required:
            raise ValidationError('Request body must be JSON')
        return {}

    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')

    return data


def validate_request_data(schema_class, data):
    """
    用 marshmallow schema 驗證輸入

    Returns:
        dict: 驗證後的資料

    Raises:
        ValidationError: errors 欄位會列出每個有問題的欄位
    """
    schema = schema_class()
    try:
        return schema.load(data)
    except SchemaValidationError as err:
        raise ValidationError('Validation failed', errors=err.messages)


def reject_unknown_keys(data, allowed_keys):
    """body 只能包含白名單內的 key,否則在任何修改之前就失敗"""
    invalid = [key for key in data if key not in allowed_keys]
    if invalid:
        raise ValidationError(f"Invalid properties: {', '.join(invalid)}")
