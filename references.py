from sqlalchemy.exc import SQLAlchemyError
from models import db
import logging

logger = logging.getLogger(__name__)

# ============================================
# 參照同步 (back-reference)
# ============================================
#
# project.members / project.tasks / user.projects 分別存在不同的 row,
# 每次 push / pull 只改一個 row 並單獨 commit,
# 主要寫入成功後的次要寫入失敗時不會 rollback 主要寫入,
# 而是記錄在 SyncResult 裡回報給呼叫者


class SyncResult:
    """
    主要寫入的結果 + 之後 best-effort 寫入的失敗清單

    entity: 主要寫入的物件 (已 commit)
    failures: [{'target': ..., 'id': ..., 'reason': ...}]
    """

    def __init__(self, entity):
        self.entity = entity
        self.failures = []

    @property
    def ok(self):
        return not self.failures

    def record_failure(self, target, target_id, reason):
        self.failures.append({
            'target': target,
            'id': target_id,
            'reason': reason
        })

    def has_failure(self, reason):
        return any(failure['reason'] == reason for failure in self.failures)


def _load_for_update(model, doc_id):
    # 鎖住單一 row,確保 push / pull 是原子的
    return db.session.get(model, doc_id, with_for_update=True, populate_existing=True)


def push_reference(model, doc_id, field, value):
    """
    把 value 加到 model[doc_id].field (add-to-set,不會重複)

    Returns:
        更新後的物件,找不到時回傳 None
    """
    doc = _load_for_update(model, doc_id)
    if doc is None:
        return None

    values = list(getattr(doc, field) or [])
    if value not in values:
        values.append(value)
        # 重新指定 list,SQLAlchemy 才會偵測到 JSON 欄位變更
        setattr(doc, field, values)

    db.session.commit()
    return doc


def pull_reference(model, doc_id, field, value):
    """
    從 model[doc_id].field 移除所有等於 value 的項目,不存在也不算錯誤

    Returns:
        更新後的物件,找不到時回傳 None
    """
    doc = _load_for_update(model, doc_id)
    if doc is None:
        return None

    values = list(getattr(doc, field) or [])
    remaining = [item for item in values if item != value]
    if len(remaining) != len(values):
        setattr(doc, field, remaining)

    db.session.commit()
    return doc


def sync_reference(result, operation, model, doc_id, field, value):
    """
    執行一次 best-effort 的 push / pull,失敗時只記錄在 result

    每個目標各自獨立,一個失敗不影響其他目標

    Returns:
        bool: 是否成功
    """
    target = model.__tablename__
    try:
        doc = operation(model, doc_id, field, value)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(
            f"Failed to sync {target}.{field} for {target} {doc_id}: {str(e)}",
            exc_info=True
        )
        result.record_failure(target, doc_id, 'store_error')
        return False

    if doc is None:
        logger.warning(f"Unable to sync {target}.{field}: {target} {doc_id} not found")
        result.record_failure(target, doc_id, 'not_found')
        return False

    return True


def fan_out(result, operation, model, doc_ids, field, value):
    """對每個 doc_id 各自做一次 sync_reference,回傳成功的數量"""
    succeeded = 0
    for doc_id in doc_ids:
        if sync_reference(result, operation, model, doc_id, field, value):
            succeeded += 1

    if result.failures:
        logger.warning(
            f"Partial sync of {model.__tablename__}.{field}: "
            f"{succeeded}/{len(doc_ids)} succeeded"
        )
    return succeeded
