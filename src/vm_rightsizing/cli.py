# src/vm_rightsizing/cli.py
"""VM right-sizing CLI - scan a fleet and write recommendations."""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import structlog
import yaml

from vm_rightsizing.analytics.size_catalog import SizeCatalog
from vm_rightsizing.clients.azure.client_factory import AzureClientFactory
from vm_rightsizing.config.settings import Settings
from vm_rightsizing.core.exceptions import DataValidationException, RightsizingException
from vm_rightsizing.core.utils import setup_logging
from vm_rightsizing.jobs.orchestrator import JobOrchestrator
from vm_rightsizing.jobs.poller import JobPoller
from vm_rightsizing.models.validation import validate_window_days

logger = structlog.get_logger(__name__)


def load_fleet(path: Path) -> List[Dict[str, Any]]:
    """Read an inventory file: a JSON/YAML list of VMs, or a mapping with a ``vms`` list."""
    with open(path, 'r') as f:
        data = yaml.safe_load(f)
    if isinstance(data, dict):
        data = data.get("vms")
    if not isinstance(data, list):
        raise DataValidationException("fleet", str(path), "expected a list of VMs or a mapping with 'vms'")
    return data


def resolve_window_days(window_days: Optional[int], settings: Settings) -> int:
    """Explicit ``--window-days`` (zero included) or the configured default, validated."""
    window = window_days if window_days is not None else settings.collection.scan_window_days
    return validate_window_days(window, settings.collection.max_window_days)


@click.group()
def main():
    """Azure VM right-sizing: batched metrics collection, classification and AI recommendations."""


@main.command()
@click.option('--fleet', '-f', 'fleet_path', required=True, type=click.Path(exists=True, dir_okay=False),
              help='Inventory file (JSON or YAML list of VMs)')
@click.option('--window-days', default=None, type=int, help='Scan window in days (default: COLLECTION_SCAN_WINDOW_DAYS)')
@click.option('--subscription-id', default=None, help='Only use telemetry from this subscription')
@click.option('--output', '-o', default='./data/rightsizing_results.json', help='Output JSON file path')
@click.option('--catalog', default=None, type=click.Path(exists=True, dir_okay=False),
              help='Alternate VM size catalog (YAML)')
@click.option('--no-ai', is_flag=True, help='Skip model calls and use deterministic recommendations')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--debug', is_flag=True, help='Enable debug logging')
def scan(fleet_path, window_days, subscription_id, output, catalog, no_ai, verbose, debug):
    """
    Scan a VM fleet and write right-sizing recommendations.

    Configure your .env file with:
        AZURE_TENANT_ID=your-tenant-id
        AZURE_CLIENT_ID=your-client-id
        AZURE_CLIENT_SECRET=your-client-secret
        AZURE_LOG_ANALYTICS_WORKSPACE_ID=your-workspace-id
        AI_ENDPOINT=https://your-resource.openai.azure.com
        AI_DEPLOYMENT=gpt-4o-mini

    Example:
        vm-rightsizing scan --fleet vms.json --window-days 30 --output results.json
    """

    async def run_scan() -> int:
        settings = Settings.create_from_env()
        if debug:
            settings.debug = True
        log_level = "DEBUG" if debug else settings.log_level.value
        setup_logging(settings.log_config_path, log_level=log_level)
        if no_ai:
            settings.ai.enabled = False

        factory = AzureClientFactory(settings.azure, settings.ai)
        try:
            fleet = load_fleet(Path(fleet_path))
            window = resolve_window_days(window_days, settings)
            size_catalog = SizeCatalog.from_yaml(catalog) if catalog else SizeCatalog.default()

            if verbose:
                click.echo("🔍 VM Right-Sizing Scan")
                click.echo(f"🖥️  Fleet: {len(fleet)} VMs from {fleet_path}")
                click.echo(f"📅 Scan window: {window} days")
                click.echo(f"🤖 AI recommendations: {'enabled' if settings.ai.enabled else 'disabled'}")

            backend = await factory.create_log_analytics_client()
            model = await factory.create_model_client()
            orchestrator = JobOrchestrator.from_settings(settings, backend, model, catalog=size_catalog)

            submitted = await orchestrator.submit(fleet, window, subscription_id or settings.azure.subscription_id)
            job_id = submitted["jobId"]
            click.echo(f"🚀 Job {job_id} submitted: {submitted['vmCount']} VMs in {submitted['totalBatches']} batches")

            def report(status: Dict[str, Any]) -> None:
                if verbose:
                    click.echo(f"   ⏳ {status['status']}: {status['completedBatches']}/{status['totalBatches']} batches")

            poller = JobPoller(
                orchestrator.get_status,
                interval_seconds=settings.jobs.poll_interval_seconds,
                max_wait_seconds=settings.jobs.max_wait_seconds,
            )
            final = await poller.wait(job_id, on_status=report)
            if final["status"] != "COMPLETED":
                click.echo(f"❌ Job {job_id} failed: {final.get('error')}")
                return 1

            results = await orchestrator.get_results(job_id)
            await orchestrator.wait_idle()

            output_path = Path(output)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, 'w') as f:
                json.dump(results, f, indent=2, default=str)

            summary = results.get("summary", {})
            click.echo("✅ Right-sizing scan completed successfully!")
            click.echo(f"📁 Results saved to: {output_path}")
            click.echo("📈 Summary:")
            click.echo(f"   🖥️  VMs analyzed: {summary.get('analyzed', 0)}/{summary.get('totalVMs', 0)}")
            click.echo(f"   📉 Underutilized: {summary.get('underutilized', 0)}")
            click.echo(f"   📈 Overutilized: {summary.get('overutilized', 0)}")
            click.echo(f"   ✔️  Right-sized: {summary.get('rightSized', 0)}")
            click.echo(f"   ❔ Insufficient data: {summary.get('insufficientData', 0)}")
            click.echo(f"   💰 Estimated monthly savings: ${summary.get('estimatedMonthlySavings', 0.0):.2f}")
            if summary.get("failedBatches"):
                click.echo(f"   ⚠️  Failed batches: {summary['failedBatches']}")
            if verbose and summary.get("executiveSummary"):
                click.echo(f"📝 {summary['executiveSummary']}")
            return 0

        except RightsizingException as e:
            logger.error("Right-sizing scan failed", error=e.message, details=e.details)
            click.echo(f"❌ Right-sizing scan failed: {e.message}")
            if debug:
                import traceback
                click.echo(traceback.format_exc())
            return 1
        finally:
            await factory.disconnect_all()

    exit_code = asyncio.run(run_scan())
    sys.exit(exit_code)


if __name__ == '__main__':
    main()
