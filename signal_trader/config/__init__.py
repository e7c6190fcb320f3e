# Configuration module
