"""AgentLoop sub-agent orchestration.

A language model works through multi-step tasks on the local machine: its
streamed output is scanned for embedded tool blocks, the tools run locally, and
the results are fed back for another round. Sub-agents run the same loop in
isolated conversations and can be chained into pipelines.
"""

__version__ = "0.1.0"
