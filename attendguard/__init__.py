"""AttendGuard: geofenced, fraud-resistant classroom attendance."""
