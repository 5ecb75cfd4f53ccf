"""Design-context configuration constants: single source of truth for infrastructure env vars."""

import os

# Figma REST API base URL: overridable for proxies and recorded fixtures
FIGMA_API_BASE = os.getenv("FIGMA_API_BASE", "https://api.figma.com")

# Rule profile applied by RuleConfiguration.for_environment() when no name is given
DESIGN_CONTEXT_ENV = os.getenv("DESIGN_CONTEXT_ENV", "development")
