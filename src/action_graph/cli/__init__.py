"""action-graph CLI.

Usage:
    actiongraph status              Show tracker status and counts
    actiongraph init                Create constraints and indexes
    actiongraph record ...          Record one tool invocation
    actiongraph similar TYPE ACTION Find actions with similar parameters
    actiongraph suggest USER ...    Suggest likely next actions
    actiongraph recommend USER CTX  Recommend actions for a context
    actiongraph history USER        Show a user's recent actions
    actiongraph related ACTION_ID   Show an action's neighborhood
"""

from action_graph.cli.main import app, main

__all__ = ["app", "main"]
