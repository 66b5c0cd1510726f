"""
Declarative flow engine for AI coding assistant packages.

Packages are authored once in a universal layout (commands/, agents/, rules/,
skills/, hooks/, mcp.jsonc, AGENTS.md) and installed into each platform's
layout through flows declared in platforms.yaml. The same flows run backwards
to save workspace edits into the package.

Modules:
- path_utils: glob matching, target path resolution
- map_pipeline / pipeline_steps: the $set/$rename/$unset/... document DSL
- flow_executor: runs flows against files with merge strategies
- flow_inverter: turns install flows into save flows
- format_detector: universal vs platform-specific package detection
- platform_converter / conversion_context: platform -> universal conversion
- conflicts / save_resolution: install-time and save-time conflicts
- flow_installer: multi-package install pass
"""
