"""Engine: process configuration and the vote/boost decision rules."""
