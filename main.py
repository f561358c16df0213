"""
VSL - Main Entry Point
Run verification scripts, inspect their syntax tree, or work interactively
"""

import sys
import argparse
from pathlib import Path
from typing import Dict, List, Optional
import os

# Readline support for history and auto-completion
try:
  import readline
  READLINE_AVAILABLE = True
except ImportError:
  READLINE_AVAILABLE = False

from error_handling import VSLError, VSLParseError
from interpreter import create_interpreter, get_parser, process_file, run_action
from parsing import pretty_print_ast
from semantics import check_expr, pretty_schema
from session import ERROR, VERBOSITY_NAMES, make_options, print_out
from stdlib import vsl_help
from values import make_string


VERSION = "VSL v0.3.0"

REPL_COMMANDS = [":env", ":type", ":help", ":parse", ":quit"]


def create_arg_parser() -> argparse.ArgumentParser:
  """Create command line argument parser"""
  parser = argparse.ArgumentParser(
      description='VSL - a scripting language for driving verification tasks',
      formatter_class=argparse.RawDescriptionHelpFormatter,
      epilog="""
Examples:
  %(prog)s script.vsl                 # Run a script
  %(prog)s -i                         # Interactive mode
  %(prog)s --parse script.vsl         # Parse and show the syntax tree
  %(prog)s -s summary.json -f json script.vsl
                                      # Run and write a JSON summary
  %(prog)s -v debug script.vsl        # Run with all output
        """
  )

  parser.add_argument(
      'script',
      nargs='?',
      help='VSL script file to execute'
  )

  parser.add_argument(
      '-i', '--interactive',
      action='store_true',
      help='Start interactive mode (after running the script, if given)'
  )

  parser.add_argument(
      '--parse',
      action='store_true',
      help='Parse file and show the syntax tree'
  )

  parser.add_argument(
      '--debug',
      action='store_true',
      help='Trace evaluation and type checking'
  )

  parser.add_argument(
      '-v', '--verbosity',
      choices=list(VERBOSITY_NAMES),
      default='info',
      help='Output level (default: info)'
  )

  parser.add_argument(
      '--show-position',
      action='store_true',
      help='Prefix script output with the position of the statement printing it'
  )

  parser.add_argument(
      '-s', '--summary',
      metavar='FILE',
      help='Write a verification summary to FILE'
  )

  parser.add_argument(
      '-f', '--summary-format',
      choices=['pretty', 'json'],
      default='pretty',
      help='Format of the verification summary (default: pretty)'
  )

  parser.add_argument(
      '--no-color',
      action='store_true',
      help='Disable ANSI colors in printed terms'
  )

  parser.add_argument(
      '--version',
      action='version',
      version=VERSION
  )

  return parser


def options_from_args(args: argparse.Namespace) -> Dict:
  return make_options(
      verbosity=VERBOSITY_NAMES[args.verbosity],
      show_position=args.show_position,
      summary_file=args.summary,
      summary_format=args.summary_format,
      use_color=not args.no_color and sys.stdout.isatty(),
      debug=args.debug
  )


def parse_file(script_path: str, debug: bool = False) -> int:
  """Parse a script file and show its syntax tree"""
  try:
    statements = get_parser(debug).parse_file(script_path)
  except VSLParseError as e:
    print(f"{e}")
    return 1

  print(f"Parsed {len(statements)} statements:")
  print("=" * 50)
  for i, stmt in enumerate(statements, 1):
    print(f"\nStatement {i}:")
    print(pretty_print_ast(stmt))
  return 0


def run_script_file(script_path: str, options: Dict) -> int:
  """Run a script file with a fresh session, returning the exit status"""
  try:
    process_file(options, script_path)
  except VSLError as e:
    print_out(options, ERROR, f"{e}")
    return 1
  except OSError as e:
    print_out(options, ERROR, f"Error: cannot run '{script_path}': {e.strerror}")
    if options['debug']:
      import traceback
      traceback.print_exc()
    return 1
  return 0


def setup_readline() -> None:
  """Setup readline with history and auto-completion"""
  if not READLINE_AVAILABLE:
    return

  history_file = os.path.expanduser("~/.vsl_history")
  try:
    readline.read_history_file(history_file)
  except OSError:
    pass  # First run, no history yet
  readline.set_history_length(1000)

  def completer(text, state):
    matches = [cmd for cmd in REPL_COMMANDS if cmd.startswith(text)]
    if state < len(matches):
      return matches[state]
    return None

  readline.set_completer(completer)
  readline.parse_and_bind("tab: complete")

  import atexit
  atexit.register(readline.write_history_file, history_file)


def print_repl_help() -> None:
  print("REPL Commands:")
  print("  :env              - Show every name in scope with its type")
  print("  :type <expr>      - Show the type of an expression")
  print("  :help <name>      - Show the documentation of a primitive")
  print("  :parse <stmt>     - Show the syntax tree of a statement")
  print("  :quit             - Exit REPL")
  print()
  print("Statements:")
  print("  let x = 5;                 - Value binding")
  print("  let f n = n * 2;           - Function definition")
  print("  t <- fresh_symbolic \"t\" {| Integer |};")
  print("                             - Run an action and bind its result")
  print("  print (f 4);               - Run an action")


def run_repl_command(interp, line: str) -> bool:
  """Handle a ':' command, returning False when the REPL should stop"""
  command, _, argument = line.partition(" ")
  argument = argument.strip()

  if command in (":quit", ":q"):
    return False
  if command == ":env":
    interp.run_statement("env")
  elif command == ":type":
    session = interp.session()
    expr = interp.parser.parse_expression(argument)
    print(pretty_schema(check_expr(session['types'], session['typedefs'], expr, interp.options['debug'])))
  elif command == ":help":
    if argument:
      run_action(vsl_help(make_string(argument)), interp.rc)
    else:
      print_repl_help()
  elif command == ":parse":
    print(pretty_print_ast(interp.parser.parse_statement(argument)))
  else:
    print(f"Unknown command {command}, try :help")
  return True


def run_interactive_mode(options: Dict, interp=None) -> None:
  """Read statements one at a time against a single session"""
  print(f"{VERSION} - Interactive Mode")
  print("Type ':quit' to quit, ':help' for commands")
  if READLINE_AVAILABLE:
    print("Readline enabled: Use ↑/↓ for history, Tab for completion")
  print()

  setup_readline()
  interp = interp or create_interpreter(options)

  while True:
    try:
      line = input("vsl> ").strip()
    except (KeyboardInterrupt, EOFError):
      print("\nGoodbye!")
      break

    if not line:
      continue
    try:
      if line.startswith(":"):
        if not run_repl_command(interp, line):
          break
      else:
        interp.run_statement(line)
    except VSLError as e:
      print(f"{e}")
    except SystemExit:
      raise
    except Exception as e:
      print(f"Unexpected error: {e}")
      if options['debug']:
        import traceback
        traceback.print_exc()


def main(argv: Optional[List[str]] = None) -> None:
  """Main entry point for VSL"""
  arg_parser = create_arg_parser()
  args = arg_parser.parse_args(argv)
  options = options_from_args(args)

  if args.script:
    if not Path(args.script).exists():
      print(f"Error: Script file '{args.script}' does not exist")
      sys.exit(1)

    if args.parse:
      sys.exit(parse_file(args.script, debug=args.debug))
    if not args.interactive:
      sys.exit(run_script_file(args.script, options))

    interp = create_interpreter(options)
    try:
      interp.run_file(args.script)
    except VSLError as e:
      print_out(options, ERROR, f"{e}")
    run_interactive_mode(options, interp)

  elif args.interactive:
    run_interactive_mode(options)

  else:
    arg_parser.print_help()


if __name__ == "__main__":
  main()
