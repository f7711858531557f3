"""
Test package for hb_transcode.

unit/         component tests with patched subprocess calls
integration/  orchestrator runs over temporary directory trees
regression/   fixed bugs that must stay fixed

HandBrakeCLI and ffprobe are never executed.
"""
