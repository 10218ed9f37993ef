"""CLI entry point for the surfrec reconstruction pipeline.

Usage:
    surfrec reconstruct cloud.ply mesh.ply            # Default settings
    surfrec reconstruct cloud.ply mesh.ply -c configs/pipeline.yaml --voxel-size 0.05
    surfrec info                                      # Show stages and strategies
    surfrec schema                                    # Print config JSON schema
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from surfrec.core.logging import setup_logging

app = typer.Typer(name="surfrec", help="Point cloud to mesh surface reconstruction")
console = Console()


@app.command()
def reconstruct(
    input_path: Path = typer.Argument(..., help="Input point cloud (.ply)"),
    output_path: Path = typer.Argument(..., help="Output mesh (.ply)"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Pipeline config path"),
    voxel_size: Optional[float] = typer.Option(None, help="Override grid voxel size"),
    intersections: Optional[int] = typer.Option(None, help="Override intersections along bbox diagonal"),
    decomposition: Optional[str] = typer.Option(None, help="Override extraction strategy (MC, PMC)"),
    log_level: Optional[str] = typer.Option(None, help="Log level (DEBUG, INFO, ...)"),
) -> None:
    """Reconstruct a mesh from a point cloud."""
    from surfrec.core.contracts import PipelineConfig
    from surfrec.core.errors import ReconstructionError
    from surfrec.core.pipeline_runner import ReconstructionPipeline, load_pipeline_config
    from surfrec.utils.io import read_point_buffer, write_mesh_ply

    pipeline_cfg = load_pipeline_config(config) if config else PipelineConfig()
    setup_logging(log_level or pipeline_cfg.log_level)

    recon = pipeline_cfg.reconstruction
    grid_updates = {}
    if voxel_size is not None:
        grid_updates.update(voxel_size=voxel_size, intersections=0)
    if intersections is not None:
        grid_updates["intersections"] = intersections
    updates = {}
    if grid_updates:
        updates["grid"] = recon.grid.model_copy(update=grid_updates)
    if decomposition is not None:
        updates["isosurface"] = recon.isosurface.model_copy(update={"decomposition": decomposition})
    if updates:
        recon = recon.model_copy(update=updates)

    if not input_path.exists():
        console.print(f"[red]Input not found: {input_path}[/red]")
        raise typer.Exit(1)

    try:
        pipeline = ReconstructionPipeline(recon)
    except ReconstructionError as e:
        console.print(f"[red]{type(e).__name__}: {e}[/red]")
        raise typer.Exit(2)

    result = pipeline.reconstruct(read_point_buffer(input_path))
    if not result.success:
        console.print(f"[red]Reconstruction failed ({result.error_type}): {result.error}[/red]")
        raise typer.Exit(1)

    write_mesh_ply(output_path, result.mesh)
    table = Table(title=f"Reconstruction: {input_path.name}")
    table.add_column("Step", style="cyan")
    table.add_column("Time (s)", style="green", justify="right")
    for meta in result.steps:
        table.add_row(meta.step_name, f"{meta.elapsed_seconds:.2f}")
    console.print(table)
    console.print(
        f"[green]Done.[/green] {result.mesh.num_vertices} vertices, "
        f"{result.mesh.num_faces} faces → {output_path}"
    )


@app.command()
def info(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Pipeline config path"),
) -> None:
    """Show pipeline stages and their active settings."""
    from surfrec.core.contracts import PipelineConfig
    from surfrec.core.pipeline_runner import STAGES, import_step_class, load_pipeline_config
    from surfrec.steps.s01_point_surface._search_tree import SEARCH_TREES
    from surfrec.steps.s03_isosurface._extractors import EXTRACTORS

    pipeline_cfg = load_pipeline_config(config) if config else PipelineConfig()
    recon = pipeline_cfg.reconstruction

    table = Table(title=f"Pipeline: {pipeline_cfg.project_name}")
    table.add_column("#", style="dim")
    table.add_column("Step", style="cyan")
    table.add_column("Module", style="green")
    table.add_column("Reaches", style="yellow")
    table.add_column("Settings", style="dim")

    for i, (module_path, attr, state) in enumerate(STAGES, 1):
        step_cls = import_step_class(module_path)
        settings = ", ".join(f"{k}={v}" for k, v in getattr(recon, attr).model_dump().items())
        table.add_row(str(i), step_cls.name, module_path, state.value, settings)
    console.print(table)
    console.print(f"Decompositions: {', '.join(sorted(EXTRACTORS))}")
    console.print(f"Search trees: {', '.join(sorted(SEARCH_TREES))}")
    console.print(f"Workers: {recon.workers}")


@app.command()
def schema() -> None:
    """Print the JSON schema of the pipeline config."""
    from surfrec.core.contracts import PipelineConfig

    console.print_json(json.dumps(PipelineConfig.model_json_schema()))


if __name__ == "__main__":
    app()
