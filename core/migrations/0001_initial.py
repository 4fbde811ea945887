import django.contrib.auth.models
import django.contrib.auth.validators
import django.db.models.deletion
import django.utils.timezone
from decimal import Decimal
from django.conf import settings
from django.db import migrations, models


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
                ('email', models.EmailField(blank=True, max_length=254, verbose_name='email address')),
                ('is_staff', models.BooleanField(default=False, help_text='Designates whether the user can log into this admin site.', verbose_name='staff status')),
                ('is_active', models.BooleanField(default=True, help_text='Designates whether this user should be treated as active. Unselect this instead of deleting accounts.', verbose_name='active')),
                ('date_joined', models.DateTimeField(default=django.utils.timezone.now, verbose_name='date joined')),
                ('role', models.CharField(choices=[('customer', 'Customer'), ('courier', 'Courier'), ('manager', 'Manager'), ('admin', 'Admin')], default='customer', max_length=20)),
                ('phone', models.CharField(blank=True, max_length=20)),
                ('vehicle_class', models.CharField(blank=True, choices=[('car', 'Car'), ('motorcycle', 'Motorcycle'), ('bicycle', 'Bicycle')], help_text='Couriers only', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('groups', models.ManyToManyField(blank=True, help_text='The groups this user belongs to. A user will get all permissions granted to each of their groups.', related_name='user_set', related_query_name='user', to='auth.group', verbose_name='groups')),
                ('user_permissions', models.ManyToManyField(blank=True, help_text='Specific permissions for this user.', related_name='user_set', related_query_name='user', to='auth.permission', verbose_name='user permissions')),
            ],
            options={
                'db_table': 'core_user',
            },
            managers=[
                ('objects', django.contrib.auth.models.UserManager()),
            ],
        ),
        migrations.CreateModel(
            name='Restaurant',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=200)),
                ('address', models.TextField(blank=True)),
                ('latitude', models.DecimalField(decimal_places=7, help_text='Pickup point for delivery', max_digits=10)),
                ('longitude', models.DecimalField(decimal_places=7, help_text='Pickup point for delivery', max_digits=10)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('manager', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='managed_restaurants', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'core_restaurant',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='Food',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=200)),
                ('price', models.DecimalField(decimal_places=2, max_digits=12)),
                ('is_available', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('restaurant', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='foods', to='core.restaurant')),
            ],
            options={
                'db_table': 'core_food',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='Order',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(max_length=32, unique=True)),
                ('customer_phone', models.CharField(max_length=20)),
                ('is_gift', models.BooleanField(default=False)),
                ('recipient_phone', models.CharField(blank=True, help_text='Gift recipient; required when is_gift', max_length=20)),
                ('restaurant_name', models.CharField(max_length=200)),
                ('restaurant_lat', models.DecimalField(decimal_places=7, max_digits=10)),
                ('restaurant_lon', models.DecimalField(decimal_places=7, max_digits=10)),
                ('order_type', models.CharField(choices=[('delivery', 'Delivery'), ('takeaway', 'Takeaway'), ('dine_in', 'Dine In')], default='delivery', max_length=20)),
                ('vehicle_class', models.CharField(blank=True, choices=[('car', 'Car'), ('motorcycle', 'Motorcycle'), ('bicycle', 'Bicycle')], max_length=20)),
                ('destination_lat', models.DecimalField(blank=True, decimal_places=7, max_digits=10, null=True)),
                ('destination_lon', models.DecimalField(blank=True, decimal_places=7, max_digits=10, null=True)),
                ('destination_address', models.CharField(blank=True, max_length=255)),
                ('distance_km', models.DecimalField(blank=True, decimal_places=2, max_digits=8, null=True)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('preparing', 'Preparing'), ('cooked', 'Cooked'), ('delivering', 'Delivering'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], default='pending', max_length=20)),
                ('food_total', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=12)),
                ('vat_total', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=12)),
                ('delivery_fee', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=12)),
                ('service_fee', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=12)),
                ('tip', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=12)),
                ('total', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=12)),
                ('pickup_code', models.CharField(blank=True, max_length=12)),
                ('handoff_code', models.CharField(blank=True, max_length=12)),
                ('description', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('courier', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='deliveries', to=settings.AUTH_USER_MODEL)),
                ('customer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='orders', to=settings.AUTH_USER_MODEL)),
                ('restaurant', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='orders', to='core.restaurant')),
            ],
            options={
                'db_table': 'core_order',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['customer', '-created_at'], name='core_order_customer_idx'),
                    models.Index(fields=['restaurant', '-created_at'], name='core_order_restaurant_idx'),
                    models.Index(fields=['status', '-updated_at'], name='core_order_status_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('courier__isnull', False), models.Q(('status__in', ['completed', 'cancelled']), _negated=True)), fields=('courier',), name='unique_active_order_per_courier'),
                ],
            },
        ),
        migrations.CreateModel(
            name='OrderItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=200)),
                ('quantity', models.PositiveIntegerField()),
                ('price', models.DecimalField(decimal_places=2, max_digits=12)),
                ('total', models.DecimalField(decimal_places=2, max_digits=12)),
                ('food', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='order_items', to='core.food')),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='core.order')),
            ],
            options={
                'db_table': 'core_order_item',
                'ordering': ['order', 'id'],
            },
        ),
        migrations.CreateModel(
            name='OrderPayment',
            fields=[
                ('order', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, primary_key=True, related_name='payment', serialize=False, to='core.order')),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('currency', models.CharField(default='ETB', max_length=3)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('paid', 'Paid'), ('failed', 'Failed'), ('refunded', 'Refunded'), ('cancelled', 'Cancelled'), ('processing', 'Processing'), ('success', 'Success'), ('approved', 'Approved')], default='pending', max_length=20)),
                ('tx_ref', models.CharField(blank=True, max_length=100, null=True, unique=True)),
                ('checkout_url', models.URLField(blank=True, max_length=500)),
                ('gateway_reference', models.CharField(blank=True, max_length=100)),
                ('gateway_method', models.CharField(blank=True, max_length=50)),
                ('gateway_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ('gateway_currency', models.CharField(blank=True, max_length=3)),
                ('verified_at', models.DateTimeField(blank=True, null=True)),
                ('payload', models.JSONField(blank=True, default=dict)),
                ('failure_reason', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'core_order_payment',
            },
        ),
        migrations.CreateModel(
            name='LedgerEntry',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('requester_type', models.CharField(choices=[('courier', 'Courier'), ('restaurant', 'Restaurant')], max_length=20)),
                ('original_amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('fee', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=12)),
                ('vat_total', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=12)),
                ('net_amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('currency', models.CharField(default='ETB', max_length=3)),
                ('type', models.CharField(choices=[('deposit', 'Deposit'), ('withdraw', 'Withdraw')], max_length=20)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('paid', 'Paid'), ('failed', 'Failed'), ('refunded', 'Refunded'), ('cancelled', 'Cancelled'), ('processing', 'Processing'), ('success', 'Success'), ('approved', 'Approved')], default='pending', max_length=20)),
                ('note', models.CharField(blank=True, max_length=500)),
                ('reference', models.CharField(blank=True, max_length=64, null=True, unique=True)),
                ('bank_code', models.CharField(blank=True, max_length=50)),
                ('account_name', models.CharField(blank=True, max_length=255)),
                ('account_number', models.CharField(blank=True, max_length=50)),
                ('gateway_response', models.JSONField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('courier', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='ledger_entries', to=settings.AUTH_USER_MODEL)),
                ('order', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='ledger_entries', to='core.order')),
                ('restaurant', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='ledger_entries', to='core.restaurant')),
            ],
            options={
                'verbose_name_plural': 'Ledger entries',
                'db_table': 'core_ledger_entry',
                'ordering': ['created_at', 'id'],
                'indexes': [
                    models.Index(fields=['requester_type', 'status', 'type'], name='core_ledger_kind_idx'),
                    models.Index(fields=['restaurant', 'created_at'], name='core_ledger_restaurant_idx'),
                    models.Index(fields=['courier', 'created_at'], name='core_ledger_courier_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('order__isnull', False)), fields=('order', 'requester_type', 'type'), name='unique_order_settlement'),
                ],
            },
        ),
    ]
