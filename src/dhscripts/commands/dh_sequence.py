#!/usr/bin/python3 -B
import argparse
from typing import Optional, Sequence

from dhscripts.commands.context import (
    DhCommandContext,
    new_dh_argument_parser,
    parse_dh_args,
    run_dh_command,
)
from dhscripts.dh.sequences import (
    BUILD_STAMP_FILE,
    SequenceEditor,
    create_stamp,
    load_addons,
    requested_addons,
)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = new_dh_argument_parser(
        """\
    Inspect the dh command sequences and manage the build stamp.

    The sequences include the changes of all active add-ons (from --with,
    `dh --with` in debian/rules and dh-sequence-* build-dependencies).
    """
    )
    parser.add_argument(
        "--with",
        dest="with_addons",
        action="append",
        default=[],
        metavar="ADDON[,ADDON...]",
        help="Enable these add-ons",
    )
    parser.add_argument(
        "--without",
        dest="without_addons",
        action="append",
        default=[],
        metavar="ADDON[,ADDON...]",
        help="Disable these add-ons (including the ones enabled by default)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    show_parser = subparsers.add_parser(
        "show",
        allow_abbrev=False,
        help="Print the commands of a sequence (one per line)",
    )
    show_parser.add_argument("sequence", help="The name of the sequence (such as build)")
    subparsers.add_parser(
        "list-addons",
        allow_abbrev=False,
        help="Print the add-ons that would be active",
    )
    stamp_parser = subparsers.add_parser(
        "create-stamp",
        allow_abbrev=False,
        help="Record the packages acted on in a stamp file",
    )
    stamp_parser.add_argument(
        "stamp_file",
        metavar="stamp-file",
        nargs="?",
        default=BUILD_STAMP_FILE,
        help=f"The stamp file to update (default: {BUILD_STAMP_FILE})",
    )
    return parse_dh_args(parser, argv)


def _active_addons(context: DhCommandContext) -> Sequence[str]:
    return requested_addons(
        debian_dir=context.debian_dir,
        with_addons=context.parsed_args.with_addons,
        without_addons=context.parsed_args.without_addons,
    )


def dh_sequence(context: DhCommandContext) -> None:
    parsed_args = context.parsed_args
    if parsed_args.command == "create-stamp":
        create_stamp(parsed_args.stamp_file, [p.name for p in context.packages])
        return
    addons = _active_addons(context)
    if parsed_args.command == "list-addons":
        for addon in addons:
            print(addon)
        return
    editor = SequenceEditor()
    load_addons(editor, addons)
    for command in editor.commands(parsed_args.sequence):
        print(command)


def main(argv: Optional[Sequence[str]] = None) -> None:
    run_dh_command(parse_args, dh_sequence, argv)


if __name__ == "__main__":
    main()
