"""
Command-Line Interface for Laboratory Synthetic Data

Provides commands for:
- generate: Generate dataset families
- validate: Re-validate persisted datasets
- schema: Show the schema registry
- config: Manage configurations
"""

import argparse
import sys
import logging
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.panel import Panel

# Import our modules
from labsynth.config import ConfigLoader, ConfigValidator, get_default_config
from labsynth.exceptions import InvalidConfiguration, LabSynthError
from labsynth.orchestrator import FamilyStatus, SynthesisOrchestrator
from labsynth.schema import describe_family, get_family, list_families
from labsynth.utils import DatasetStore, FileHandler, setup_logging
from labsynth.validation import InvariantValidator

# Setup console
console = Console()

STATUS_STYLE = {
    FamilyStatus.SUCCESS: "[green]✓ success[/green]",
    FamilyStatus.FAILED: "[bold red]✗ failed[/bold red]",
    FamilyStatus.CANCELLED: "[yellow]- cancelled[/yellow]",
}


class CLI:
    """Main CLI class"""

    def __init__(self):
        self.parser = self._create_parser()
        self.config_loader = ConfigLoader()

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser"""
        parser = argparse.ArgumentParser(
            description="Laboratory Synthetic Data CLI",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # Generate all default families for the 15 months up to a date
  python cli.py generate --end-date 2024-12-31 --seed 42 --output ./output

  # Model-based synthesis of one family from a real source
  L2_COSTS=./sources/costs python cli.py generate --mode production --families cost_data

  # Re-validate persisted output
  python cli.py validate ./output

  # Show a family's sub-tables and fields
  python cli.py schema antibiogram
            """
        )

        parser.add_argument(
            '--verbose', '-v',
            action='store_true',
            help='Enable verbose output'
        )
        parser.add_argument('--log-file', help='Also write logs to this file')

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        # Generate command
        generate_parser = subparsers.add_parser('generate', help='Generate dataset families')
        generate_parser.add_argument('--mode', '-m', help='parametric/development or model-based/production')
        generate_parser.add_argument('--seed', '-s', type=int, help='Random seed for reproducibility')
        generate_parser.add_argument('--end-date', help='Last day of the range (default: today)')
        generate_parser.add_argument('--start-date', help='First day of the range (default: 15 months before end)')
        generate_parser.add_argument('--output', '-o', help='Output root directory')
        generate_parser.add_argument('--families', '-f', nargs='+', help='Families to generate')
        generate_parser.add_argument('--format', choices=FileHandler.EXTENSIONS, help='Output file format')
        generate_parser.add_argument('--preset', '-p', help='Configuration preset')
        generate_parser.add_argument('--config', '-c', help='Custom configuration file')
        generate_parser.add_argument('--strict', action='store_true', help='Block persistence on invariant violations')
        generate_parser.add_argument('--no-parallel', action='store_true', help='Generate families one at a time')

        # Validate command
        validate_parser = subparsers.add_parser('validate', help='Re-validate persisted datasets')
        validate_parser.add_argument('output_root', help='Output root of a previous run')
        validate_parser.add_argument('--families', '-f', nargs='+', help='Families to validate')
        validate_parser.add_argument('--format', choices=FileHandler.EXTENSIONS, default='csv', help='Stored file format')
        validate_parser.add_argument('--tolerance', '-t', type=float, default=0.01, help='Derivation tolerance')
        validate_parser.add_argument('--report', '-r', help='Output report file (JSON)')

        # Schema command
        schema_parser = subparsers.add_parser('schema', help='Show the schema registry')
        schema_parser.add_argument('family', nargs='?', help='Family to describe')
        schema_parser.add_argument('--all', action='store_true', help='Include optional families')

        # Config command
        config_parser = subparsers.add_parser('config', help='Manage configurations')
        config_subparsers = config_parser.add_subparsers(dest='config_command')

        # Config list
        config_subparsers.add_parser('list', help='List available presets')

        # Config show
        show_parser = config_subparsers.add_parser('show', help='Show the effective configuration')
        show_parser.add_argument('--preset', '-p', help='Preset name')
        show_parser.add_argument('--config', '-c', help='Custom configuration file')

        # Config create
        create_parser = config_subparsers.add_parser('create', help='Create custom configuration')
        create_parser.add_argument('output', help='Output configuration file')

        return parser

    def run(self, args=None) -> int:
        """Run CLI and return the exit code"""
        args = self.parser.parse_args(args)

        # Setup logging
        log_level = logging.DEBUG if args.verbose else logging.INFO
        setup_logging(level=log_level, log_file=args.log_file)

        # Execute command
        if args.command == 'generate':
            return self.cmd_generate(args)
        elif args.command == 'validate':
            return self.cmd_validate(args)
        elif args.command == 'schema':
            return self.cmd_schema(args)
        elif args.command == 'config':
            return self.cmd_config(args)
        else:
            self.parser.print_help()
            return 0

    def cmd_generate(self, args) -> int:
        """Generate dataset families"""
        console.print(Panel.fit(
            "🧪 [bold]Laboratory Data Generation[/bold]",
            border_style="blue"
        ))

        try:
            config = self.config_loader.load(args.config, preset=args.preset)
            if args.config:
                console.print(f"✓ Loaded custom configuration: {args.config}")

            # Override with command-line arguments
            if args.mode:
                config.generation.mode = args.mode
            if args.seed is not None:
                config.generation.seed = args.seed
            if args.end_date:
                config.generation.end_date = args.end_date
            if args.start_date:
                config.generation.start_date = args.start_date
            if args.output:
                config.output.root = args.output
            if args.families:
                config.generation.families = args.families
            if args.format:
                config.output.format = args.format
            if args.strict:
                config.validation.strict = True
            if args.no_parallel:
                config.generation.enable_parallel = False

            orchestrator = SynthesisOrchestrator(config)
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console
            ) as progress:
                task = progress.add_task("Generating datasets...", total=None)
                report = orchestrator.run()
                progress.update(task, completed=True)

        except InvalidConfiguration as e:
            console.print(f"[bold red]✗ Invalid configuration:[/bold red] {e}")
            report = getattr(e, "report", None)
            if report is not None:
                self._print_run(report)
            return 1
        except (LabSynthError, OSError) as e:
            console.print(f"[bold red]✗ Error:[/bold red] {str(e)}")
            if args.verbose:
                console.print_exception()
            return 1

        self._print_run(report)

        if report.passed:
            console.print("\n[bold green]✓ Generation complete![/bold green]")
            return 0
        console.print(f"\n[bold red]✗ {len(report.failed) + len(report.cancelled)} families did not complete[/bold red]")
        return 1

    def _print_run(self, report):
        table = Table(title=f"Run Summary ({report.mode}, seed {report.seed}, {report.start} to {report.end})",
                      show_header=True)
        table.add_column("Family", style="cyan")
        table.add_column("Status")
        table.add_column("Rows", style="green")
        table.add_column("Violations", style="yellow")
        table.add_column("Detail", style="white")

        for name, result in report.results.items():
            rows = ", ".join(f"{t}={n:,}" for t, n in result.rows.items())
            violations = str(len(result.validation.violations)) if result.validation else ""
            detail = f"{result.error_type}: {result.error}" if result.error_type else ""
            table.add_row(name, STATUS_STYLE[result.status], rows, violations, detail)

        console.print(table)
        console.print(f"Output: {report.output_root}")

    def cmd_validate(self, args) -> int:
        """Re-validate persisted datasets"""
        console.print(Panel.fit(
            "✅ [bold]Data Validation[/bold]",
            border_style="green"
        ))

        store = DatasetStore(args.output_root, args.format)
        families = args.families or [f for f in list_families(include_optional=True) if store.exists(f)]
        if not families:
            console.print(f"[bold red]✗ No datasets found under {args.output_root}[/bold red]")
            return 1

        validator = InvariantValidator(args.tolerance)
        results = {}
        failed = False

        table = Table(title="Invariant Checks", show_header=True)
        table.add_column("Family", style="cyan")
        table.add_column("Rows", style="green")
        table.add_column("Violations", style="yellow")
        table.add_column("Status")

        for family in families:
            try:
                get_family(family)
                if not store.exists(family):
                    raise FileNotFoundError(f"no dataset for {family} under {args.output_root}")
                tables = store.load(family)
            except (LabSynthError, OSError) as e:
                failed = True
                results[family] = {"error": str(e)}
                table.add_row(family, "", "", f"[bold red]✗ {e}[/bold red]")
                continue

            report = validator.validate(family, tables)
            results[family] = report.to_dict()
            failed = failed or not report.passed
            table.add_row(
                family,
                f"{sum(report.rows_checked.values()):,}",
                str(len(report.violations)),
                "[green]✓ Pass[/green]" if report.passed else "[bold red]✗ Fail[/bold red]",
            )
            for violation in report.violations[:5]:
                console.print(f"  [red]{violation}[/red]")

        console.print(table)

        # Save results
        if args.report:
            FileHandler.write_json(results, args.report)
            console.print(f"\n✓ Results saved to: {args.report}")

        if failed:
            console.print("\n[bold red]✗ Validation failed[/bold red]")
            return 1
        console.print("\n[bold green]✓ Validation complete![/bold green]")
        return 0

    def cmd_schema(self, args) -> int:
        """Show the schema registry"""
        if not args.family:
            table = Table(title="Dataset Families", show_header=True)
            table.add_column("Family", style="cyan")
            table.add_column("Sub-tables", style="yellow")
            table.add_column("Source", style="magenta")
            table.add_column("Description", style="white")
            for name in list_families(include_optional=args.all):
                family = get_family(name)
                label = name if family.default else f"{name} (optional)"
                table.add_row(label, ", ".join(family.sub_tables), family.source_env or "", family.description)
            console.print(table)
            return 0

        try:
            description = describe_family(args.family)
        except LabSynthError as e:
            console.print(f"[bold red]✗ Error:[/bold red] {e}")
            return 1

        for table_name, details in description.items():
            table = Table(title=f"{args.family}.{table_name} ({details['role']})", show_header=True)
            table.add_column("Field", style="cyan")
            table.add_column("Type", style="yellow")
            table.add_column("Role", style="green")
            table.add_column("Domain", style="magenta")
            table.add_column("Formula", style="white")
            for spec in details["fields"]:
                table.add_row(
                    spec["name"], spec["type"], spec["role"], spec["domain"] or "",
                    details["derivations"].get(spec["name"], ""),
                )
            console.print(table)
        return 0

    def cmd_config(self, args) -> int:
        """Manage configurations"""
        console.print(Panel.fit(
            "⚙️ [bold]Configuration Management[/bold]",
            border_style="magenta"
        ))

        try:
            if args.config_command == 'list':
                presets = self.config_loader.list_presets()

                table = Table(title="Available Presets", show_header=True)
                table.add_column("Preset", style="cyan")
                table.add_column("Description", style="white")

                descriptions = {
                    'development': 'Parametric generation, CSV output, warn-only validation',
                    'production': 'Model-based synthesis from L2_* sources, strict validation',
                }

                for preset in presets:
                    desc = descriptions.get(preset, 'Custom preset')
                    table.add_row(preset, desc)

                console.print(table)

            elif args.config_command == 'show':
                config = self.config_loader.load(args.config, preset=args.preset)
                console.print_json(data=config.to_dict())

                valid, errors = ConfigValidator.validate(config)
                if not valid:
                    console.print("\n[bold yellow]Configuration problems:[/bold yellow]")
                    for error in errors:
                        console.print(f"  ✗ {error}")
                    return 1

            elif args.config_command == 'create':
                config = get_default_config()
                self.config_loader.save_config(config, args.output)

                console.print(f"✓ Created configuration file: {args.output}")
                console.print("  Edit this file to customize settings")

            else:
                console.print("Use 'config list', 'config show [--preset name] [--config file]', or 'config create <file>'")

        except (LabSynthError, OSError) as e:
            console.print(f"[bold red]✗ Error:[/bold red] {str(e)}")
            if args.verbose:
                console.print_exception()
            return 1

        return 0


def main():
    """CLI entry point"""
    cli = CLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
