"""Engine layer: option building, external collaborators, orchestrators."""
