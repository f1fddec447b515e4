from flask import Blueprint, jsonify
from marshmallow import Schema, fields, validate, EXCLUDE
from models import db, Project, User, Task, PROJECT_STATUSES
from auth import auth_required, get_current_principal
from errors import NotFound, Unauthorized, ValidationError
from references import SyncResult, push_reference, pull_reference, sync_reference, fan_out
from validation import get_json_body, validate_request_data
import logging

projects_bp = Blueprint('projects', __name__)
logger = logging.getLogger(__name__)

MEMBER_ACTIONS = ('add', 'delete')

# ============================================
# Input Validation Schemas
# ============================================


class CreateProjectSchema(Schema):
    """建立專案驗證"""
    class Meta:
        # createdBy / tasks 之類的欄位一律忽略
        unknown = EXCLUDE

    title = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=255, error='Title cannot be empty'),
        error_messages={'required': 'Title is required.'}
    )
    description = fields.Str(allow_none=True, validate=validate.Length(max=2000))
    status = fields.Str(validate=validate.OneOf(PROJECT_STATUSES))
    members = fields.List(fields.Int(), load_default=list)


class UpdateMemberSchema(Schema):
    """新增 / 移除成員驗證"""
    member = fields.Int(required=True, error_messages={'required': 'Member is required.'})
    action = fields.Str(
        required=True,
        validate=validate.OneOf(MEMBER_ACTIONS, error="Invalid action. Use 'add' or 'delete'."),
        error_messages={'required': "Invalid action. Use 'add' or 'delete'."}
    )


class UpdateStatusSchema(Schema):
    """更新專案狀態驗證"""
    status = fields.Str(
        required=True,
        validate=validate.OneOf(PROJECT_STATUSES, error='Valid status is required.'),
        error_messages={'required': 'Valid status is required.'}
    )

# ============================================
# 輔助函數
# ============================================


def get_project_or_404(project_id):
    project = db.session.get(Project, project_id)
    if not project:
        raise NotFound('The project referenced in the parameters was not found.')
    return project


def build_member_list(owner_id, requested):
    """
    去除重複的成員和建立者本身,最後再把建立者加到尾端

    Returns:
        list: 不重複、一定包含建立者的成員清單
    """
    members = []
    for member_id in requested:
        if member_id != owner_id and member_id not in members:
            members.append(member_id)
    members.append(owner_id)
    return members


def sync_response(result, status_code, message, partial_message):
    """主要寫入成功時的回應;有 best-effort 失敗就附上 syncErrors"""
    body = {
        'status': status_code,
        'message': message if result.ok else partial_message,
        'data': result.entity.to_dict()
    }
    if not result.ok:
        body['syncErrors'] = result.failures
    return jsonify(body), status_code

# ============================================
# Project Coordinator 操作
# ============================================


def create_project(principal, data):
    """
    建立專案,再把專案 id 加到每個成員的 user.projects

    成員同步失敗不會 rollback 專案
    """
    result = validate_request_data(CreateProjectSchema, data)
    members = build_member_list(principal.id, result['members'])

    project = Project(
        title=result['title'],
        description=result.get('description'),
        status=result.get('status', 'active'),
        created_by=principal.id,
        members=members,
        tasks=[]
    )

    db.session.add(project)
    db.session.commit()

    logger.info(f"Project created: {project.id} by user {principal.id}")

    sync = SyncResult(project)
    fan_out(sync, push_reference, User, members, 'projects', project.id)
    return sync


def update_member(project_id, data):
    """
    新增或移除專案成員

    project.members 的 push / pull 是原子的;
    action=add 時再 best-effort 更新成員自己的 user.projects;
    建立者不能被移除
    """
    result = validate_request_data(UpdateMemberSchema, data)
    member_id = result['member']

    project = get_project_or_404(project_id)
    if result['action'] == 'delete' and member_id == project.created_by:
        raise ValidationError('The project owner cannot be removed from the project.')

    if result['action'] == 'add':
        project = push_reference(Project, project_id, 'members', member_id)
    else:
        project = pull_reference(Project, project_id, 'members', member_id)

    if project is None:
        raise NotFound('The project referenced in the parameters was not found.')

    logger.info(f"Member {member_id} {result['action']} on project {project_id}")

    sync = SyncResult(project)
    if result['action'] == 'add':
        sync_reference(sync, push_reference, User, member_id, 'projects', project.id)
    return sync


def update_status(project_id, data):
    result = validate_request_data(UpdateStatusSchema, data)

    project = get_project_or_404(project_id)
    project.status = result['status'].lower()
    db.session.commit()

    logger.info(f"Project {project_id} status changed to {project.status}")
    return project


def delete_project(principal, project_id):
    """
    刪除專案 (只有建立者可以),再從每個成員的 user.projects 移除

    每個成員各自同步,一個失敗不影響其他成員
    """
    project = get_project_or_404(project_id)

    if project.created_by != principal.id:
        logger.warning(f"User {principal.id} tried to delete project {project_id} owned by {project.created_by}")
        raise Unauthorized(
            'You are not authorized to delete this project. Only the owner can delete this project.'
        )

    members = list(project.members or [])
    db.session.delete(project)
    db.session.commit()

    logger.info(f"Project deleted: {project_id} by user {principal.id}")

    sync = SyncResult(project)
    fan_out(sync, pull_reference, User, members, 'projects', project_id)
    return sync


def get_project(project_id):
    """
    查詢專案,tasks 展開成完整任務,members 只展開 username

    找不到的參照 (已刪除的任務或使用者) 不展開,另外放在 danglingTasks / danglingMembers
    """
    project = get_project_or_404(project_id)

    task_ids = list(project.tasks or [])
    member_ids = list(project.members or [])

    tasks_by_id = {}
    if task_ids:
        tasks_by_id = {task.id: task for task in Task.query.filter(Task.id.in_(task_ids)).all()}

    users_by_id = {}
    if member_ids:
        users_by_id = {user.id: user for user in User.query.filter(User.id.in_(member_ids)).all()}

    data = project.to_dict()
    data['tasks'] = [tasks_by_id[task_id].to_dict() for task_id in task_ids if task_id in tasks_by_id]
    data['members'] = [
        {'id': member_id, 'username': users_by_id[member_id].username}
        for member_id in member_ids if member_id in users_by_id
    ]
    # 同步失敗留下的參照不展開,但要回報出來
    data['danglingTasks'] = [task_id for task_id in task_ids if task_id not in tasks_by_id]
    data['danglingMembers'] = [member_id for member_id in member_ids if member_id not in users_by_id]
    return data

# ============================================
# Project API
# ============================================


@projects_bp.route('/createProject', methods=['POST'])
@auth_required
def create_project_route():
    data = get_json_body()
    result = create_project(get_current_principal(), data)

    return sync_response(
        result, 201,
        'Project created successfully',
        'Project created, but some members could not be linked to it'
    )


@projects_bp.route('/updateMemberForProject/<int:project_id>', methods=['PUT'])
@auth_required
def update_member_route(project_id):
    data = get_json_body()
    result = update_member(project_id, data)

    return sync_response(
        result, 200,
        'Members updated successfully',
        'Members updated, but the member could not be linked to the project'
    )


@projects_bp.route('/updateProjectStatus/<int:project_id>', methods=['PUT'])
@auth_required
def update_status_route(project_id):
    data = get_json_body()
    project = update_status(project_id, data)

    return jsonify({
        'status': 200,
        'message': 'Project status updated successfully',
        'data': project.to_dict()
    }), 200


@projects_bp.route('/deleteProject/<int:project_id>', methods=['DELETE'])
@auth_required
def delete_project_route(project_id):
    result = delete_project(get_current_principal(), project_id)

    body = {
        'status': 200,
        'message': 'Project deleted successfully'
    }
    if not result.ok:
        body['message'] = 'Project deleted, but some members could not be detached from it'
        body['syncErrors'] = result.failures

    return jsonify(body), 200


@projects_bp.route('/fetchProject/<int:project_id>', methods=['GET'])
@auth_required
def fetch_project_route(project_id):
    return jsonify({
        'status': 200,
        'message': 'Project fetched successfully',
        'data': get_project(project_id)
    }), 200
