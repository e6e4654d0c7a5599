"""Wire models and protocol helpers shared between the agent and the bridge server."""
