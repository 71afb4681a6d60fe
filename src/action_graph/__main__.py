"""Allow ``python -m action_graph``."""

from action_graph.cli import main

main()
