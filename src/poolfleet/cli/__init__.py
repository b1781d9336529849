import typer
from pathlib import Path
from typing_extensions import Annotated

from dotenv import load_dotenv, find_dotenv

load_dotenv(find_dotenv())

app = typer.Typer(
    help="Poolfleet: spread one workload template over a topology of node pools",
    add_completion=False,
)


@app.command("operator")
def run_operator():
    """Run the Kubernetes operator (connects to cluster)."""
    from poolfleet.main import main

    main()


@app.command("render")
def render(
    manifest: Annotated[Path, typer.Argument(help="UnitedDeployment manifest (YAML)")],
    pool: Annotated[str, typer.Option("-p", "--pool", help="Pool to render")],
    revision: Annotated[
        str, typer.Option("-r", "--revision", help="Revision name stamped on the workload")
    ] = "rendered",
    namespace: Annotated[
        str, typer.Option("-n", "--namespace", help="Namespace if the manifest sets none")
    ] = "default",
):
    """Print the workload object a pool would get, without a cluster."""
    from pydantic import ValidationError
    from poolfleet.cli.render import dump_yaml, load_manifest, render_pool

    try:
        ud = load_manifest(manifest, namespace=namespace)
        obj = render_pool(ud, pool, revision)
    except (OSError, ValueError, ValidationError) as e:
        typer.echo(f"Failed to render pool {pool}: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(dump_yaml(obj))
