"""
Pipeline services: stage execution, orchestration, lead materialization,
batch distribution and corrective jobs.

Import concrete services from their modules, e.g.:
    from leadgen.services.pipeline_factory import create_pipeline
"""
