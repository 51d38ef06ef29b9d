"""Ports - interfaces between the domain and the outside world."""
