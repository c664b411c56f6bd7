import os
from setuptools import setup, find_packages

with open('README.md', 'r') as f:
    LONG_DESCRIPTION = f.read()

with open('requirements.txt', 'r') as f:
    INSTALL_REQUIRES = f.read().strip().split('\n')

setup(
    name='emfit',
    version=os.getenv('CIRCLE_TAG', '0.1.0'),

    description='Gaussian Mixture Models fitted via Expectation-Maximization in PyTorch.',
    long_description=LONG_DESCRIPTION,
    long_description_content_type='text/markdown',

    packages=find_packages(exclude=['tests', 'tests.*']),
    classifiers=[
        'Development Status :: 4 - Beta',
        'Programming Language :: Python :: 3',
        'Topic :: Scientific/Engineering :: Artificial Intelligence'
    ],
    python_requires='>=3.8',
    install_requires=INSTALL_REQUIRES,
    extras_require={
        'test': ['pytest', 'scikit-learn', 'flaky'],
    },

    license='License :: OSI Approved :: MIT License',
    zip_safe=False
)
