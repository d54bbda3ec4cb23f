import decimal

import django.contrib.auth.models
import django.contrib.auth.validators
import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

import marketplace.validators


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('auth', '0012_alter_user_first_name_max_length'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('password', models.CharField(max_length=128, verbose_name='password')),
                ('last_login', models.DateTimeField(blank=True, null=True, verbose_name='last login')),
                ('is_superuser', models.BooleanField(default=False, help_text='Designates that this user has all permissions without explicitly assigning them.', verbose_name='superuser status')),
                ('username', models.CharField(error_messages={'unique': 'A user with that username already exists.'}, help_text='Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.', max_length=150, unique=True, validators=[django.contrib.auth.validators.UnicodeUsernameValidator()], verbose_name='username')),
                ('first_name', models.CharField(blank=True, max_length=150, verbose_name='first name')),
                ('last_name', models.CharField(blank=True, max_length=150, verbose_name='last name')),
                ('is_staff', models.BooleanField(default=False, help_text='Designates whether the user can log into this admin site.', verbose_name='staff status')),
                ('is_active', models.BooleanField(default=True, help_text='Designates whether this user should be treated as active. Unselect this instead of deleting accounts.', verbose_name='active')),
                ('date_joined', models.DateTimeField(default=django.utils.timezone.now, verbose_name='date joined')),
                ('email', models.EmailField(error_messages={'unique': 'A user with that email already exists.'}, help_text='Required. Enter a valid email address.', max_length=254, unique=True, verbose_name='email address')),
                ('phone_number', models.CharField(blank=True, default='', help_text='Optional. Enter phone number in international format.', max_length=20, validators=[marketplace.validators.validate_phone_number], verbose_name='phone number')),
                ('user_type', models.CharField(choices=[('farmer', 'Farmer'), ('provider', 'Equipment Provider')], help_text='Required. Select whether you are a farmer or an equipment provider.', max_length=10, verbose_name='user type')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('groups', models.ManyToManyField(blank=True, help_text='The groups this user belongs to. A user will get all permissions granted to each of their groups.', related_name='user_set', related_query_name='user', to='auth.group', verbose_name='groups')),
                ('user_permissions', models.ManyToManyField(blank=True, help_text='Specific permissions for this user.', related_name='user_set', related_query_name='user', to='auth.permission', verbose_name='user permissions')),
            ],
            options={
                'verbose_name': 'user',
                'verbose_name_plural': 'users',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['email'], name='user_email_idx'),
                    models.Index(fields=['user_type'], name='user_type_idx'),
                ],
            },
            managers=[
                ('objects', django.contrib.auth.models.UserManager()),
            ],
        ),
        migrations.CreateModel(
            name='Demand',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('title', models.CharField(max_length=200, verbose_name='title')),
                ('required_service', models.CharField(help_text='Kind of machine or service needed (e.g. harvesting)', max_length=200, verbose_name='required service')),
                ('description', models.TextField(blank=True, default='', verbose_name='description')),
                ('start_date', models.DateField(verbose_name='start date')),
                ('end_date', models.DateField(verbose_name='end date')),
                ('city', models.CharField(blank=True, default='', max_length=120, verbose_name='city')),
                ('latitude', models.DecimalField(blank=True, decimal_places=6, max_digits=9, null=True, validators=[marketplace.validators.validate_latitude], verbose_name='latitude')),
                ('longitude', models.DecimalField(blank=True, decimal_places=6, max_digits=9, null=True, validators=[marketplace.validators.validate_longitude], verbose_name='longitude')),
                ('status', models.CharField(choices=[('waiting', 'Waiting'), ('negotiating', 'Negotiating'), ('matched', 'Matched')], default='waiting', help_text='Derived from the state of the proposals', max_length=20, verbose_name='status')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('farmer', models.ForeignKey(help_text='Farmer who posted the demand', on_delete=django.db.models.deletion.CASCADE, related_name='demands', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'demand',
                'verbose_name_plural': 'demands',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['farmer'], name='demand_farmer_idx'),
                    models.Index(fields=['status'], name='demand_status_idx'),
                    models.Index(fields=['start_date', 'end_date'], name='demand_window_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Offer',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('equipment_type', models.CharField(max_length=200, verbose_name='equipment type')),
                ('description', models.TextField(blank=True, default='', verbose_name='description')),
                ('price_rate', models.DecimalField(decimal_places=2, help_text='Rental price per day', max_digits=10, validators=[marketplace.validators.validate_positive_amount], verbose_name='price rate')),
                ('city', models.CharField(blank=True, default='', max_length=120, verbose_name='city')),
                ('latitude', models.DecimalField(blank=True, decimal_places=6, max_digits=9, null=True, validators=[marketplace.validators.validate_latitude], verbose_name='latitude')),
                ('longitude', models.DecimalField(blank=True, decimal_places=6, max_digits=9, null=True, validators=[marketplace.validators.validate_longitude], verbose_name='longitude')),
                ('booking_status', models.CharField(choices=[('waiting', 'Waiting'), ('negotiating', 'Negotiating'), ('matched', 'Matched')], default='waiting', help_text='Derived from the state of the reservations', max_length=20, verbose_name='booking status')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('provider', models.ForeignKey(help_text='Provider renting out the equipment', on_delete=django.db.models.deletion.CASCADE, related_name='offers', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'offer',
                'verbose_name_plural': 'offers',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['provider'], name='offer_provider_idx'),
                    models.Index(fields=['booking_status'], name='offer_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='AvailabilitySlot',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('start_date', models.DateField(verbose_name='start date')),
                ('end_date', models.DateField(verbose_name='end date')),
                ('offer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='availability_slots', to='marketplace.offer')),
            ],
            options={
                'verbose_name': 'availability slot',
                'verbose_name_plural': 'availability slots',
                'ordering': ['start_date'],
                'indexes': [
                    models.Index(fields=['offer', 'start_date'], name='slot_offer_start_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Proposal',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('price', models.DecimalField(decimal_places=2, help_text='Price of the initial bid', max_digits=10, validators=[marketplace.validators.validate_positive_amount], verbose_name='price')),
                ('current_price', models.DecimalField(decimal_places=2, help_text='Price on the table after counter-offers', max_digits=10, validators=[marketplace.validators.validate_positive_amount], verbose_name='current price')),
                ('description', models.TextField(blank=True, default='', verbose_name='description')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('accepted', 'Accepted'), ('rejected', 'Rejected')], default='pending', max_length=20, verbose_name='status')),
                ('negotiation_round', models.PositiveSmallIntegerField(default=0, validators=[django.core.validators.MaxValueValidator(4)], verbose_name='negotiation round')),
                ('last_counter_by', models.CharField(blank=True, choices=[('farmer', 'Farmer'), ('provider', 'Provider')], default='', max_length=10, verbose_name='last counter by')),
                ('counter_offer_history', models.JSONField(blank=True, default=list, verbose_name='counter-offer history')),
                ('farmer_validated', models.BooleanField(default=False, verbose_name='farmer validated')),
                ('provider_validated', models.BooleanField(default=False, verbose_name='provider validated')),
                ('farmer_validated_at', models.DateTimeField(blank=True, null=True)),
                ('provider_validated_at', models.DateTimeField(blank=True, null=True)),
                ('version', models.PositiveIntegerField(default=0, verbose_name='version')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('demand', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='proposals', to='marketplace.demand')),
                ('provider', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='proposals', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'proposal',
                'verbose_name_plural': 'proposals',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['demand', 'status'], name='proposal_demand_status_idx'),
                    models.Index(fields=['provider'], name='proposal_provider_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Reservation',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('start_date', models.DateField(verbose_name='start date')),
                ('end_date', models.DateField(verbose_name='end date')),
                ('price_rate', models.DecimalField(decimal_places=2, max_digits=10, validators=[marketplace.validators.validate_positive_amount], verbose_name='price rate')),
                ('total_cost', models.DecimalField(decimal_places=2, default=decimal.Decimal('0.00'), max_digits=12, verbose_name='total cost')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('rejected', 'Rejected'), ('cancelled', 'Cancelled'), ('approved', 'Approved')], default='pending', max_length=20, verbose_name='status')),
                ('provider_validated', models.BooleanField(default=False, verbose_name='provider validated')),
                ('farmer_validated', models.BooleanField(default=False, verbose_name='farmer validated')),
                ('provider_validated_at', models.DateTimeField(blank=True, null=True)),
                ('farmer_validated_at', models.DateTimeField(blank=True, null=True)),
                ('approved_at', models.DateTimeField(blank=True, null=True, verbose_name='approved at')),
                ('version', models.PositiveIntegerField(default=0, verbose_name='version')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('farmer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='reservations', to=settings.AUTH_USER_MODEL)),
                ('offer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='reservations', to='marketplace.offer')),
                ('provider', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='provider_reservations', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'reservation',
                'verbose_name_plural': 'reservations',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['offer', 'status'], name='reservation_offer_status_idx'),
                    models.Index(fields=['farmer'], name='reservation_farmer_idx'),
                    models.Index(fields=['provider'], name='reservation_provider_idx'),
                ],
            },
        ),
    ]
