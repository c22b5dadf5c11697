"""Cross-cutting helpers: logging, config loading, settings, clocks, errors."""
