from setuptools import setup, find_packages

setup(
    name='hybridctl',
    version='0.1.0',
    packages=find_packages(include=['hybridctl', 'hybridctl.*']),
    include_package_data=True,
    install_requires=[
        'typer[all]',
        'fastapi',
        'uvicorn',
        'kubernetes',
        'ansible',
        'ansible-runner',
        'python-dotenv',
        'requests',
        'pyyaml',
        'pydantic>=2',
        'pydantic-settings',
        'paramiko',
        'rich',
    ],
    extras_require={
        'test': [
            'pytest',
            'httpx',
        ],
    },
    entry_points={
        'console_scripts': [
            'hybridctl=hybridctl.cli:app'
        ]
    },
    description='Provisioning and readiness-validation pipeline for hybrid K3s clusters',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.8',
)
