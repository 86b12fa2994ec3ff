"""Command line interface for running and inspecting the kickstart pipeline.

This is effectively all of the argparse and completer logic - we want the imports
in this file to be minimal so that the startup is very fast. (Use lazy imports
where it makes sense/is feasible.)

This file contains a ``__name__ == "__main__"`` and can be run directly.
"""

import argparse
import sys

import argcomplete


def completer_stages(**kwargs) -> list[str]:
    """Argcomplete stage completer for ``--force``, lists every stage key and name
    of the kickstart pipeline."""
    # NOTE: importing "lazily" to reduce startup time of CLI
    from labrecipe.pipeline import kickstart_pipeline

    pipeline = kickstart_pipeline(with_extract=True)
    names = set()
    for step in pipeline.steps:
        names.add(step.name)
        names.add(step.key)
    return sorted(names)


def get_version_key(args, config):
    """Build the version key from the configuration, overridden by ``--version-key``
    and then by the individual level flags."""
    from labrecipe.version import LEVELS, VersionKey

    tokens = dict(config["version"])
    if getattr(args, "version_key", None) is not None:
        tokens.update(VersionKey.parse(args.version_key).as_dict())
    for level in LEVELS:
        value = getattr(args, level, None)
        if value is not None:
            tokens[level] = value
    return VersionKey.from_tokens(**tokens)


def get_pipeline(args, config):
    from labrecipe.pipeline import kickstart_pipeline

    with_extract = config["with_extract"] or getattr(args, "with_extract", False)
    return kickstart_pipeline(with_extract=with_extract)


def get_data_root(args, config) -> str:
    if getattr(args, "data_root", None) is not None:
        return args.data_root
    return config["data_root"]


def get_orchestrator(args, config, dry=False, run_store=None, cli=""):
    """Create the orchestrator described by the command line flags and configuration."""
    import shlex

    from labrecipe.orchestrator import Orchestrator
    from labrecipe.runners import CommandRunner

    command = config["command"]
    if getattr(args, "command", None) is not None:
        command = shlex.split(args.command)

    force = list(getattr(args, "force", None) or [])
    if getattr(args, "force_all", False):
        force = ["all"]

    return Orchestrator(
        get_pipeline(args, config),
        get_data_root(args, config),
        runner=CommandRunner(command),
        force=force,
        force_downstream=getattr(args, "force_downstream", False),
        run_store=run_store,
        dry=dry,
        cli=cli,
    )


def init_console_logging(args, log_path=None):
    import logging

    from labrecipe import utils

    level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    utils.init_logging(
        log_path,
        level,
        no_color=getattr(args, "no_color", False),
        quiet=getattr(args, "quiet", False),
        plain=getattr(args, "plain", False),
    )


def cmd_run(args) -> int:
    """``labrecipe run`` - run the pipeline for the version key, skipping every stage
    whose outputs are already complete."""
    # NOTE: importing "lazily" to reduce startup time of CLI
    import logging
    import os
    import signal
    from datetime import datetime

    from labrecipe import reporting, utils
    from labrecipe.errors import LabRecipeError
    from labrecipe.store import RunStore

    config = utils.get_configuration()
    run_string = "labrecipe " + " ".join(
        f'"{part}"' if " " in part else part for part in sys.argv[1:]
    )

    log_path = None
    if not args.no_log and not args.dry:
        timestamp = datetime.now().strftime(utils.TIMESTAMP_FORMAT)
        log_path = os.path.join(config["logs_path"], f"kickstart_{timestamp}.log")
    init_console_logging(args, log_path)

    try:
        key = get_version_key(args, config)
        run_store = None if args.dry else RunStore(config["manager_cache_path"])
        orchestrator = get_orchestrator(
            args, config, dry=args.dry, run_store=run_store, cli=run_string
        )
    except LabRecipeError as e:
        logging.error(str(e))
        return 1

    if args.dry:
        try:
            reporting.show(reporting.render_plan(orchestrator.plan(key)))
        except LabRecipeError as e:
            logging.error(str(e))
            return 1
        return 0

    def handle_interrupt(signum, frame):
        # the first interrupt lets the running stage finish, a second one aborts
        logging.warning("Interrupt received, stopping after the current stage (interrupt again to abort)")
        orchestrator.request_stop()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    previous_handler = signal.signal(signal.SIGINT, handle_interrupt)
    try:
        result = orchestrator.run(key)
    except LabRecipeError as e:
        if orchestrator.last_result is not None:
            reporting.show(reporting.render_result(orchestrator.last_result))
        reporting.show(reporting.render_failure(e))
        return 1
    except KeyboardInterrupt:
        logging.error("Aborted")
        return 130
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    reporting.show(reporting.render_result(result))
    if result.status == "interrupted":
        return 130
    return 0


def cmd_plan(args) -> int:
    """``labrecipe plan`` - show what a run would do without running or writing anything."""
    # NOTE: importing "lazily" to reduce startup time of CLI
    import logging

    from labrecipe import reporting, utils
    from labrecipe.errors import LabRecipeError

    config = utils.get_configuration()
    init_console_logging(args)
    try:
        key = get_version_key(args, config)
        orchestrator = get_orchestrator(args, config, dry=True)
        plan = orchestrator.plan(key)
    except LabRecipeError as e:
        logging.error(str(e))
        return 1
    reporting.show(reporting.render_plan(plan))
    return 0


def cmd_paths(args) -> int:
    """``labrecipe paths`` - list the concrete store paths for the version key."""
    # NOTE: importing "lazily" to reduce startup time of CLI
    import logging

    from labrecipe import reporting, utils
    from labrecipe.errors import LabRecipeError

    config = utils.get_configuration()
    init_console_logging(args)
    try:
        key = get_version_key(args, config)
        pipeline = get_pipeline(args, config)
        table = reporting.render_paths(pipeline, key, get_data_root(args, config))
    except LabRecipeError as e:
        logging.error(str(e))
        return 1
    reporting.show(table)
    return 0


def cmd_diagram(args) -> int:
    """``labrecipe diagram`` - render the pipeline's stages and stores with graphviz."""
    # NOTE: importing "lazily" to reduce startup time of CLI
    import logging

    from labrecipe import reporting, utils

    config = utils.get_configuration()
    init_console_logging(args)
    pipeline = get_pipeline(args, config)
    if args.text:
        print(str(pipeline.dag))
        return 0
    path = reporting.render_graph(
        pipeline.dag.to_graphviz(pipeline.name), args.output, args.format
    )
    if path is None:
        return 1
    logging.info("Diagram written to %s", path)
    return 0


def cmd_ls(args) -> int:
    """``labrecipe ls`` - list previous runs recorded in the run store."""
    # NOTE: importing "lazily" to reduce startup time of CLI
    from labrecipe import reporting, utils
    from labrecipe.store import RunStore

    config = utils.get_configuration()
    store = RunStore(config["manager_cache_path"])
    version = None
    if args.version_key is not None:
        version = args.version_key
    reporting.show(reporting.render_runs(store.get_runs("kickstart", version)))
    return 0


def add_version_arguments(parser):
    version_group = parser.add_argument_group(
        "Version", "Choose the version key. Unset levels come from the configuration file."
    )
    version_group.add_argument(
        "--version-key",
        dest="version_key",
        help="The full version key as E-S-C-T, e.g. '7-0-0-0'.",
    )
    for level, description in (
        ("E", "extraction"),
        ("S", "substrate"),
        ("C", "coagulation"),
        ("T", "target"),
    ):
        version_group.add_argument(
            f"-{level}",
            dest=level,
            help=f"The {description} version token.",
        )


def add_pipeline_arguments(parser):
    pipeline_group = parser.add_argument_group("Pipeline", "Where the stores live and what runs.")
    pipeline_group.add_argument(
        "--data-root",
        dest="data_root",
        help="The directory holding all stores, overrides the configured data root.",
    )
    pipeline_group.add_argument(
        "--command",
        dest="command",
        help="The program running the stages, e.g. 'cargo run --release --bin transpaer-lab --'.",
    )
    pipeline_group.add_argument(
        "--with-extract",
        dest="with_extract",
        action="store_true",
        help="Run the extract stage to create the cache store rather than requiring it to exist.",
    )


def add_display_arguments(parser):
    display_group = parser.add_argument_group(
        "Display", "Configure console output during pipeline execution."
    )
    display_group.add_argument(
        "-v",
        "--verbose",
        dest="verbose",
        action="store_true",
        help="Log at debug level.",
    )
    display_group.add_argument(
        "--quiet",
        dest="quiet",
        action="store_true",
        help="Suppress all log output to console.",
    )
    display_group.add_argument(
        "--no-color", dest="no_color", action="store_true", help="Less fancy colors."
    )
    display_group.add_argument(
        "--plain",
        dest="plain",
        action="store_true",
        help="Print normal logging rather than rich colored logs. This will output the exact same text printed into the file log.",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="labrecipe",
        description="Run the versioned data kickstart pipeline, reusing every store that is already built.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    labrecipe run -E 7 -S 0 -C 0 -T 0
    labrecipe run --version-key 7-0-0-1
    labrecipe run --force coagulate --force-downstream
    labrecipe plan -T 1
    labrecipe paths
    labrecipe diagram --output kickstart
    labrecipe ls
""",
    )
    subparsers = parser.add_subparsers(dest="subparser_name")

    run_parser = subparsers.add_parser("run", help="Run the pipeline.")
    add_version_arguments(run_parser)
    add_pipeline_arguments(run_parser)
    caching_group = run_parser.add_argument_group(
        "Caching", "Control which completed stages get re-run."
    )
    caching_group.add_argument(
        "--force",
        dest="force",
        action="append",
        help="Re-run the given stage even if its outputs are complete. Takes a stage name or key, can be given multiple times.",
    ).completer = completer_stages
    caching_group.add_argument(
        "--force-all",
        dest="force_all",
        action="store_true",
        help="Re-run every stage.",
    )
    caching_group.add_argument(
        "--force-downstream",
        dest="force_downstream",
        action="store_true",
        help="Also re-run every stage that depends on a forced stage.",
    )
    outputs_group = run_parser.add_argument_group("Outputs")
    outputs_group.add_argument(
        "--dry",
        dest="dry",
        action="store_true",
        help="Do a dry run: only show what would run, without running stages or modifying stores.",
    )
    outputs_group.add_argument(
        "--no-log",
        dest="no_log",
        action="store_true",
        help="Specify this flag to not store the log.",
    )
    add_display_arguments(run_parser)

    plan_parser = subparsers.add_parser("plan", help="Show what a run would do.")
    add_version_arguments(plan_parser)
    add_pipeline_arguments(plan_parser)
    plan_parser.add_argument(
        "--force", dest="force", action="append", help="Plan as if the given stage were forced."
    ).completer = completer_stages
    plan_parser.add_argument(
        "--force-all", dest="force_all", action="store_true", help="Plan as if every stage were forced."
    )
    plan_parser.add_argument(
        "--force-downstream",
        dest="force_downstream",
        action="store_true",
        help="Also force every stage that depends on a forced stage.",
    )
    add_display_arguments(plan_parser)

    paths_parser = subparsers.add_parser("paths", help="List the store paths for a version key.")
    add_version_arguments(paths_parser)
    add_pipeline_arguments(paths_parser)
    add_display_arguments(paths_parser)

    diagram_parser = subparsers.add_parser("diagram", help="Render the pipeline graph.")
    add_pipeline_arguments(diagram_parser)
    diagram_parser.add_argument(
        "--output",
        dest="output",
        default="kickstart",
        help="Output path for the rendered graph, without extension.",
    )
    diagram_parser.add_argument(
        "--format", dest="format", default="svg", help="Graphviz output format, e.g. svg or png."
    )
    diagram_parser.add_argument(
        "--text",
        dest="text",
        action="store_true",
        help="Print the dependency tree as text instead of rendering it.",
    )
    add_display_arguments(diagram_parser)

    ls_parser = subparsers.add_parser("ls", help="List previous runs.")
    ls_parser.add_argument(
        "--version-key", dest="version_key", help="Only list runs of this version key."
    )

    return parser


def main(argv=None):
    """'Main' command line entrypoint, parses command line flags and dispatches to the
    relevant subcommand."""
    parser = build_parser()
    argcomplete.autocomplete(parser, always_complete_options=False)

    args = parser.parse_args(argv)

    commands = {
        "run": cmd_run,
        "plan": cmd_plan,
        "paths": cmd_paths,
        "diagram": cmd_diagram,
        "ls": cmd_ls,
    }
    if args.subparser_name not in commands:
        parser.print_help()
        sys.exit(1)

    sys.exit(commands[args.subparser_name](args))


if __name__ == "__main__":
    main()
