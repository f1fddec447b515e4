from flask import Blueprint, jsonify
from marshmallow import Schema, fields, validate, EXCLUDE
from models import db, Task, Project, TASK_STATUSES
from auth import auth_required
from errors import NotFound, InternalError
from references import SyncResult, push_reference, pull_reference, sync_reference
from validation import get_json_body, validate_request_data, reject_unknown_keys
import logging

tasks_bp = Blueprint('tasks', __name__)
logger = logging.getLogger(__name__)

EDITABLE_TASK_FIELDS = ('title', 'description', 'status', 'assignedTo')

# ============================================
# Input Validation Schemas
# ============================================


class CreateTaskSchema(Schema):
    """建立任務驗證"""
    class Meta:
        unknown = EXCLUDE

    title = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=255),
        error_messages={'required': 'Title and description are required'}
    )
    description = fields.Str(
        required=True,
        validate=validate.Length(min=1),
        error_messages={'required': 'Title and description are required'}
    )
    status = fields.Str(validate=validate.OneOf(TASK_STATUSES))
    assigned_to = fields.List(fields.Str(), data_key='assignedTo', load_default=list)
    finished_by = fields.Str(data_key='finishedBy')


class EditTaskSchema(Schema):
    """更新任務驗證 (欄位都是選填,沒給的不變)"""
    title = fields.Str(validate=validate.Length(min=1, max=255))
    description = fields.Str(validate=validate.Length(min=1))
    # 任何合法狀態都可以直接設定,沒有狀態轉移限制
    status = fields.Str(validate=validate.OneOf(TASK_STATUSES))
    assigned_to = fields.List(fields.Str(), data_key='assignedTo')

# ============================================
# 輔助函數
# ============================================


def get_task_or_404(task_id):
    task = db.session.get(Task, task_id)
    if not task:
        raise NotFound('Task not found.')
    return task


def raise_sync_failure(sync, not_found_message, data=None):
    """
    back-reference 同步失敗時回報給呼叫者

    主要寫入已經 commit,不會 rollback
    """
    payload = {'syncErrors': sync.failures}
    if data is not None:
        payload['data'] = data

    if sync.has_failure('not_found'):
        raise NotFound(not_found_message, payload=payload)
    raise InternalError('Unable to update the project referenced by this task.', payload=payload)

# ============================================
# Task Coordinator 操作
# ============================================


def create_task(project_id, data):
    """
    建立任務,再把任務 id 加到 project.tasks

    如果第二步失敗,任務已經存在 (孤兒任務),錯誤會回報但不刪除任務
    """
    result = validate_request_data(CreateTaskSchema, data)

    # 建立時 project 必須存在
    if not db.session.get(Project, project_id):
        raise NotFound('The project referenced in the parameters was not found.')

    task = Task(
        title=result['title'],
        description=result['description'],
        status=result.get('status', 'to-do'),
        assigned_to=result['assigned_to'],
        project_id=project_id
    )
    if 'finished_by' in result:
        task.finished_by = result['finished_by']

    db.session.add(task)
    db.session.commit()

    logger.info(f"Task created: {task.id} in project {project_id}")

    sync = SyncResult(task)
    if not sync_reference(sync, push_reference, Project, project_id, 'tasks', task.id):
        logger.warning(f"Task {task.id} persisted but not linked to project {project_id}")
        raise_sync_failure(
            sync,
            'The project referenced in the parameters was not found.',
            data=task.to_dict()
        )
    return sync


def get_task(task_id):
    return get_task_or_404(task_id)


def list_tasks_for_project(project_id):
    """沒有任務時回傳空 list,不視為錯誤"""
    return Task.query.filter_by(project_id=project_id).order_by(Task.created_at, Task.id).all()


def edit_task(task_id, data):
    """只接受白名單欄位,有其他 key 時在修改前就失敗"""
    reject_unknown_keys(data, EDITABLE_TASK_FIELDS)
    result = validate_request_data(EditTaskSchema, data)

    task = get_task_or_404(task_id)

    for field in ('title', 'description', 'status', 'assigned_to'):
        if field in result:
            setattr(task, field, result[field])

    db.session.commit()

    logger.info(f"Task {task_id} updated: {', '.join(result) or 'no changes'}")
    return task


def delete_task(task_id):
    """
    刪除任務,再從 project.tasks 移除

    移除失敗時仍然回報錯誤,即使任務已經刪除
    """
    task = get_task_or_404(task_id)
    project_id = task.project_id

    db.session.delete(task)
    db.session.commit()

    logger.info(f"Task deleted: {task_id} from project {project_id}")

    sync = SyncResult(task)
    if not sync_reference(sync, pull_reference, Project, project_id, 'tasks', task_id):
        logger.warning(f"Task {task_id} deleted but project {project_id} still references it")
        raise_sync_failure(
            sync,
            f'The project ID referenced to this task is not found. Project ID: {project_id}'
        )
    return sync

# ============================================
# Task API
# ============================================


@tasks_bp.route('/createTask/<int:project_id>', methods=['POST'])
@auth_required
def create_task_route(project_id):
    data = get_json_body()
    result = create_task(project_id, data)

    return jsonify({
        'status': 201,
        'message': 'Task was created successfully',
        'data': result.entity.to_dict()
    }), 201


@tasks_bp.route('/task/<int:task_id>', methods=['GET'])
@auth_required
def get_task_route(task_id):
    return jsonify({
        'status': 200,
        'message': 'Task fetched successfully',
        'data': get_task(task_id).to_dict()
    }), 200


@tasks_bp.route('/getTasksInProject/<int:project_id>', methods=['GET'])
@auth_required
def list_tasks_route(project_id):
    tasks = list_tasks_for_project(project_id)

    return jsonify({
        'status': 200,
        'message': 'Tasks fetched successfully',
        'data': [task.to_dict() for task in tasks]
    }), 200


@tasks_bp.route('/editTask/<int:task_id>', methods=['PUT'])
@auth_required
def edit_task_route(task_id):
    data = get_json_body()
    task = edit_task(task_id, data)

    return jsonify({
        'status': 200,
        'message': 'Task updated successfully',
        'data': task.to_dict()
    }), 200


@tasks_bp.route('/deleteTask/<int:task_id>', methods=['DELETE'])
@auth_required
def delete_task_route(task_id):
    delete_task(task_id)

    return jsonify({
        'status': 200,
        'message': 'Task deleted successfully'
    }), 200
