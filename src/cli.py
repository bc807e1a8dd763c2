#!/usr/bin/env python3
"""
cck - Cloud consistency check and interactive repair.

Talks to the cloud check HTTP API.
"""

import json
import os
import sys

import click
import requests
from tabulate import tabulate

API_BASE_URL = os.getenv("CLOUDCHECK_API_URL", "http://localhost:8000/api/v1")


class CloudCheckClient:
    """Client for the cloud check API"""

    def __init__(self, base_url: str = API_BASE_URL):
        self.base_url = base_url.rstrip("/")

    def _make_request(self, method: str, endpoint: str, **kwargs):
        """Make HTTP request to the API"""
        url = f"{self.base_url}{endpoint}"
        try:
            response = requests.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            click.echo(f"Error: {e}", err=True)
            if hasattr(e, "response") and e.response is not None:
                try:
                    error_detail = e.response.json()
                    click.echo(f"Detail: {error_detail}", err=True)
                except (ValueError, json.JSONDecodeError):
                    click.echo(f"Response: {e.response.text}", err=True)
            return None

    def get_problems(self):
        return self._make_request("GET", "/problems")

    def resolve(self, resolutions, auto=False):
        return self._make_request(
            "POST",
            "/problems/resolve",
            json={"resolutions": resolutions, "auto": auto},
        )


def print_problems(report):
    problems = report.get("problems", [])
    if not problems:
        click.echo("No problems found")
    else:
        rows = [
            [i, p["id"], p["description"], p["auto_resolution"]]
            for i, p in enumerate(problems, start=1)
        ]
        click.echo(
            tabulate(
                rows,
                headers=["#", "Problem", "Description", "Auto"],
                tablefmt="grid",
            )
        )

    for error in report.get("errors", []):
        click.echo(
            f"Could not verify {error['type']}/{error['resource_id']}: "
            f"{error['reason']}",
            err=True,
        )


def print_outcomes(report):
    outcomes = report.get("outcomes", [])
    rows = [
        [
            o["problem_id"],
            o["disposition"],
            o["resolution"] or "-",
            o["reason"] or "",
        ]
        for o in outcomes
    ]
    click.echo(
        tabulate(
            rows,
            headers=["Problem", "Disposition", "Resolution", "Reason"],
            tablefmt="grid",
        )
    )


def prompt_resolutions(problems):
    """Ask the operator for a resolution per problem."""
    resolutions = {}
    for i, problem in enumerate(problems, start=1):
        click.echo(f"\nProblem {i} of {len(problems)}: {problem['description']}")
        options = problem["resolutions"]
        for n, option in enumerate(options, start=1):
            click.echo(f"  {n}. {option['plan']}")
        choice = click.prompt(
            "Please choose a resolution",
            type=click.IntRange(1, len(options)),
            default=1,
        )
        resolutions[problem["id"]] = options[choice - 1]["name"]
    return resolutions


@click.group()
@click.option("--api-url", default=API_BASE_URL, help="Cloud check API base URL")
@click.pass_context
def cli(ctx, api_url):
    """Cloud consistency check CLI"""
    ctx.obj = CloudCheckClient(api_url)


@cli.command()
@click.option(
    "--auto",
    is_flag=True,
    help="resolve problems automatically (not recommended for production)",
)
@click.option(
    "--report",
    is_flag=True,
    help="generate report only, don't attempt to resolve problems",
)
@click.pass_obj
def check(client, auto, report):
    """Cloud consistency check and interactive repair"""
    if auto and report:
        raise click.UsageError("--auto and --report are mutually exclusive")

    click.echo("Performing cloud check...")

    if auto:
        result = client.resolve({}, auto=True)
        if result is None:
            sys.exit(1)
        print_problems(result)
        if result.get("outcomes"):
            print_outcomes(result)
        sys.exit(1 if result["summary"].get("failed") else 0)

    result = client.get_problems()
    if result is None:
        sys.exit(1)
    print_problems(result)

    problems = result.get("problems", [])
    if report or not problems:
        sys.exit(1 if problems else 0)

    resolutions = prompt_resolutions(problems)

    click.echo("\nBelow is the list of resolutions you've provided")
    click.echo(
        tabulate(
            [[pid, name] for pid, name in resolutions.items()],
            headers=["Problem", "Resolution"],
            tablefmt="grid",
        )
    )
    if not click.confirm("Apply resolutions?"):
        click.echo("Canceled")
        sys.exit(1)

    result = client.resolve(resolutions)
    if result is None:
        sys.exit(1)
    print_outcomes(result)
    sys.exit(1 if result["summary"].get("failed") else 0)


@cli.command()
@click.option(
    "--type", "problem_type", default=None, help="Only show this problem type"
)
@click.option("--limit", "-l", default=20, help="Number of history entries to show")
@click.pass_obj
def history(client, problem_type, limit):
    """Show recorded cloud check outcomes"""
    params = {"limit": limit}
    if problem_type:
        params["problem_type"] = problem_type

    result = client._make_request("GET", "/history", params=params)
    if result is None:
        sys.exit(1)

    rows = [
        [
            entry["problem_id"],
            entry["disposition"],
            entry.get("resolution") or "-",
            entry.get("reason") or "",
            entry.get("recorded_at"),
        ]
        for entry in result
    ]
    click.echo(
        tabulate(
            rows,
            headers=["Problem", "Disposition", "Resolution", "Reason", "Time"],
            tablefmt="grid",
        )
    )


@cli.command()
@click.pass_obj
def types(client):
    """List known problem types and their resolutions"""
    result = client._make_request("GET", "/problem-types")
    if result is None:
        sys.exit(1)

    rows = [
        [t["type"], t["auto_resolution"], ", ".join(t["resolutions"])] for t in result
    ]
    click.echo(tabulate(rows, headers=["Type", "Auto", "Resolutions"], tablefmt="grid"))


if __name__ == "__main__":
    cli()
