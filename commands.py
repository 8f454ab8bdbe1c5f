"""
Flask CLI 指令

    flask --app app init-db
    flask --app app create-admin --username admin --email admin@example.com
    flask --app app show-db
"""

import click

from accounts import create_account
from auth import RegisterSchema, validate_request_data
from errors import BadRequestError
from models import db, User, Task, UserRole


@click.command('init-db')
def init_db_command():
    """建立所有資料表"""
    db.create_all()
    click.echo('Database tables created')


@click.command('create-admin')
@click.option('--username', required=True, help='Admin username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True,
              help='Admin password')
@click.option('--email', default=None, help='Admin email')
@click.option('--phone-number', default=None, help='Admin phone number')
def create_admin_command(username, password, email, phone_number):
    """
    建立管理員帳號

    註冊 API 只能建立一般使用者,第一個 Admin 要用這個指令建立
    """
    data = {'username': username, 'password': password}
    if email:
        data['email'] = email
    if phone_number:
        data['phoneNumber'] = phone_number

    try:
        user = create_account(validate_request_data(RegisterSchema, data), role=UserRole.ADMIN)
    except BadRequestError as e:
        message = e.message if isinstance(e.message, str) else '; '.join(e.message)
        raise click.ClickException(message)

    click.echo(f'Admin created: {user.username} (id={user.id})')


@click.command('show-db')
def show_db_command():
    """印出資料庫內容"""
    click.echo("\n" + "=" * 60)
    click.echo("資料庫內容")
    click.echo("=" * 60)

    users = User.query.order_by(User.id).all()
    click.echo(f"\n【使用者】共 {len(users)} 筆:")
    for u in users:
        click.echo(
            f"  ID: {u.id}, Username: {u.username}, Email: {u.email}, "
            f"Phone: {u.phone_number}, Role: {u.role.value}"
        )

    tasks = Task.query.order_by(Task.id).all()
    click.echo(f"\n【任務】共 {len(tasks)} 筆:")
    for t in tasks:
        click.echo(
            f"  ID: {t.id}, Name: {t.name}, Owner: {t.owner.username}, "
            f"Attachment: {t.attachment or '-'}"
        )

    click.echo("\n" + "=" * 60)


def register_commands(app):
    app.cli.add_command(init_db_command)
    app.cli.add_command(create_admin_command)
    app.cli.add_command(show_db_command)
