import click
from models import db, User, Project, Task
from auth import Principal, register_user, update_user
from projects import create_project
from tasks import create_task

# ============================================
# Flask CLI 指令
#   flask --app app seed [--clear]
#   flask --app app show-db
# ============================================

DEMO_USERS = [
    {'username': 'admin', 'email': 'admin@trullo.dev', 'password': 'admin-password', 'secretKey': 'admin'},
    {'username': 'member', 'email': 'member@trullo.dev', 'password': 'member-password', 'secretKey': 'member'},
]

DEMO_TASKS = [
    {'title': 'Set up repository', 'description': 'Create the repository and CI pipeline', 'status': 'done'},
    {'title': 'Design board layout', 'description': 'Sketch columns for every task status', 'status': 'in-progress'},
    {'title': 'Write API docs', 'description': 'Document every endpoint with examples'},
    {'title': 'Invite the team', 'description': 'Add all members to the demo project', 'status': 'blocked'},
]


def clear_data():
    Task.query.delete()
    Project.query.delete()
    User.query.delete()
    db.session.commit()


def seed_demo_data():
    """
    建立示範資料 (admin、一般成員、一個專案和幾個任務)

    走和 API 一樣的流程,所以 back-reference 也會同步
    """
    admin = register_user(DEMO_USERS[0])
    update_user(admin.id, {'role': 'admin'})
    member = register_user(DEMO_USERS[1])

    result = create_project(
        Principal(id=admin.id, role='admin'),
        {'title': 'Demo board', 'description': 'Seeded project', 'members': [member.id]}
    )
    project = result.entity

    for task in DEMO_TASKS:
        create_task(project.id, dict(task, assignedTo=[member.username]))

    return project


def register_commands(app):

    @app.cli.command('seed')
    @click.option('--clear', is_flag=True, help='Remove all users, projects and tasks first.')
    def seed(clear):
        """建立示範資料"""
        if clear:
            clear_data()
            click.echo('Removed all existing data')

        project = seed_demo_data()
        click.echo(f'Seeded project {project.id} with {len(DEMO_TASKS)} tasks')

    @app.cli.command('show-db')
    def show_db():
        """印出資料庫內容"""
        click.echo("\n" + "=" * 60)
        click.echo("資料庫內容")
        click.echo("=" * 60)

        users = User.query.order_by(User.id).all()
        click.echo(f"\n【使用者】共 {len(users)} 筆:")
        for u in users:
            click.echo(f"  ID: {u.id}, Email: {u.email}, Username: {u.username}, Role: {u.role}, Projects: {u.projects}")

        projects = Project.query.order_by(Project.id).all()
        click.echo(f"\n【專案】共 {len(projects)} 筆:")
        for p in projects:
            click.echo(f"  ID: {p.id}, Title: {p.title}, Status: {p.status}, Owner: {p.created_by}")
            click.echo(f"    Members: {p.members}, Tasks: {p.tasks}")

        tasks = Task.query.order_by(Task.id).all()
        click.echo(f"\n【任務】共 {len(tasks)} 筆:")
        for t in tasks:
            click.echo(f"  ID: {t.id}, Title: {t.title}, Status: {t.status}, Project: {t.project_id}")

        click.echo("\n" + "=" * 60)
