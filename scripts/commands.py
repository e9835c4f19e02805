# commands.py

import click
from flask import current_app
from flask.cli import with_appcontext
from extensions import db


@click.command('init-db')
@with_appcontext
def init_db():
    """Create all engine tables (development only; use migrations elsewhere)"""
    db.create_all()
    click.echo('Database tables created.')


@click.command('finalize-sessions')
@with_appcontext
def finalize_sessions():
    """Finalize browsing sessions that have gone idle"""
    orchestrator = current_app.services.get('orchestrator')
    result = orchestrator.finalize_inactive_sessions()
    if result.is_failure:
        click.echo(f'Session cleanup failed: {result.error}')
        raise SystemExit(1)

    click.echo(f"Checked {result.metadata.get('checked', 0)} idle sessions")
    click.echo(f"Finalized: {len(result.data['finalized'])}")
    if result.data['failed']:
        click.echo(f"Failed: {', '.join(result.data['failed'])}")


@click.command('sweep-deals')
@with_appcontext
def sweep_deals():
    """Fire inactivity triggers for deals with no recent activity"""
    orchestrator = current_app.services.get('orchestrator')
    result = orchestrator.sweep_inactive_deals()
    if result.is_failure:
        click.echo(f'Inactivity sweep failed: {result.error}')
        raise SystemExit(1)

    click.echo(f"Swept: {len(result.data['swept'])}")
    if result.data['failed']:
        click.echo(f"Failed: {', '.join(str(deal_id) for deal_id in result.data['failed'])}")


@click.command('show-deal')
@click.argument('deal_id', type=int)
@with_appcontext
def show_deal(deal_id):
    """Print a deal's engagement state"""
    orchestrator = current_app.services.get('orchestrator')
    result = orchestrator.get_deal(deal_id)
    if result.is_failure:
        click.echo(result.error)
        raise SystemExit(1)

    deal = result.data
    click.echo(f"{deal['deal_name']} [{deal['deal_stage']} / {deal['deal_status']}]")
    click.echo(f"Score: {deal['engagement_score']} ({deal['client_temperature']})")
    click.echo(f"Sessions: {deal['session_count']}, time spent: {deal['total_time_spent']}s")


def init_app(app):
    """Register commands with the Flask app"""
    app.cli.add_command(init_db)
    app.cli.add_command(finalize_sessions)
    app.cli.add_command(sweep_deals)
    app.cli.add_command(show_deal)
