from __future__ import annotations

import typer
from dotenv import load_dotenv

from src.cardexpenses.cli import expenses_app
from src.db.session import get_database_url, init_db

app = typer.Typer(help="Card expense reports CLI")
app.add_typer(expenses_app, name="expenses")


@app.command("init-db")
def init_db_cmd(database_url: str = typer.Option("", help="Override DATABASE_URL")):
    load_dotenv()
    url = database_url.strip() or get_database_url()
    init_db(url)
    typer.echo(f"Initialized {url}")


if __name__ == "__main__":
    app()
