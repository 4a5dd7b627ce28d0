"""
Test Suite for the Repository Automation Agent

This package contains tests for the agent components:
- task_store, processor, scheduler - task lifecycle and draining
- process_runner, credentials, dependencies - external process handling
- post_processing, queue_client - optional automation and remote intake
- main, cli, config - HTTP surface and configuration
"""
