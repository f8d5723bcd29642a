"""
Pipeline components: host registry, gate, prober, executor, secrets and validation.
"""
