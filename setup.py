from setuptools import setup, find_packages

install_requires = [
    'numpy>=1.21.0',
    'scipy>=1.7.0',
    'jax>=0.4.0',
    'jaxlib>=0.4.0',
]

# GPU-specific requirements
gpu_requires = [
    'jax[cuda12_pip]>=0.4.0',  # For CUDA 12
    'jaxlib[cuda12_pip]>=0.4.0',
]

extras_require = {
    'gpu': gpu_requires,
    'dev': ['pytest', 'pytest-cov'],
    'all': gpu_requires + ['pytest', 'pytest-cov'],
}

setup(
    name='jax-pk',
    version='1.0.0',
    packages=find_packages(include=['jaxpk', 'jaxpk.*']),
    install_requires=install_requires,
    extras_require=extras_require,
    python_requires='>=3.8',
)
