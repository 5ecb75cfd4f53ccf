"""Design-context package.

Subpackages:
- integrations: Figma REST client, response cache, rate limiter, URL parsing
- processing: Rule configuration, tree enhance/reduce, bounds index, comment matching
- assets: Export scanning, downloads, and file materialization

The driver-facing entry point is ``design_context.pipeline.DesignContextPipeline``.
"""
