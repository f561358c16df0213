"""
Test configuration for the VSL interpreter tests
"""

import pytest
import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from interpreter import create_interpreter
from parsing import create_parser
from session import INFO, SILENT, make_options


@pytest.fixture
def parser():
  """Provide a parser instance"""
  return create_parser()


@pytest.fixture
def interp():
  """Interpreter with a fresh session that prints at the info level"""
  return create_interpreter(make_options(verbosity=INFO))


@pytest.fixture
def quiet_interp():
  """Interpreter with a fresh session and no output"""
  return create_interpreter(make_options(verbosity=SILENT))


@pytest.fixture
def script(tmp_path):
  """Write a script file and return its path"""
  def write(text, name="script.vsl"):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path
  return write
