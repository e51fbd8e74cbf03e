from setuptools import setup, find_packages

setup(
    name='nodectl',
    version='0.1.0',
    packages=find_packages(),
    include_package_data=True,
    package_data={
        'nodectl.tests': ['fixtures/*'],
    },
    install_requires=[
        'typer[all]',
        'fastapi',
        'uvicorn',
        'paramiko',
        'pydantic>=2',
        'pyyaml',
        'python-dotenv',
    ],
    extras_require={
        'test': [
            'pytest',
            'httpx',
        ],
    },
    entry_points={
        'console_scripts': [
            'nodectl=nodectl.cli:app'
        ]
    },
    description='CLI and API toolkit for provisioning kubeadm clusters and container stacks over SSH hop chains',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.8',
)
